"""Tests for health and root API endpoints."""

from httpx import AsyncClient

from concept_mapper import __version__


class TestHealthEndpoint:
    async def test_health_reports_service(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "concept-mapper"
        assert data["version"] == __version__
        assert "timestamp" in data


class TestRootEndpoint:
    async def test_root_points_to_docs(self, client: AsyncClient) -> None:
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["docs"] == "/docs"
        assert data["health"] == "/health"

    async def test_openapi_lists_mapping_routes(self, client: AsyncClient) -> None:
        """Every router is mounted on the application."""
        paths = (await client.get("/openapi.json")).json()["paths"]

        for path in (
            "/alignments",
            "/alignments/{alignment_id}/imports",
            "/alignments/{alignment_id}/export",
            "/mappings/{mapping_id}/evaluation",
            "/concepts/search",
            "/users",
        ):
            assert path in paths
