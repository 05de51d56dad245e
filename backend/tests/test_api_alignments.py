"""Tests for the alignment and mapping API endpoints."""

import pytest
from httpx import AsyncClient

from concept_mapper.models import User


def as_user(user: User) -> dict[str, str]:
    return {"X-User-Id": user.id}


class TestAlignmentEndpoints:
    """Tests for /alignments."""

    @pytest.mark.asyncio
    async def test_create_alignment(self, client: AsyncClient) -> None:
        response = await client.post(
            "/alignments",
            json={
                "name": "Labs",
                "description": "Chemistry panel",
                "rows": [
                    {"source_code": "GLU", "source_name": "Glucose", "count": 40},
                    {"source_code": "NA", "source_name": "Sodium", "count": 38},
                ],
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Labs"
        assert data["id"]

        summary = await client.get(f"/alignments/{data['id']}/summary")
        assert summary.json()["source_rows"] == 2

    @pytest.mark.asyncio
    async def test_create_alignment_rejects_duplicate_rows(self, client: AsyncClient) -> None:
        response = await client.post(
            "/alignments",
            json={"name": "Bad", "rows": [{"row_id": 1}, {"row_id": 1}]},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_upload_alignment(self, client: AsyncClient) -> None:
        response = await client.post(
            "/alignments/upload",
            files={"file": ("icu.csv", b"concept_code;concept_name\nHR;Heart rate\nSBP;Systolic\n", "text/csv")},
            data={"name": "Uploaded ICU"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["original_filename"] == "icu.csv"
        assert set(data["column_types"]) == {"concept_code", "concept_name"}

    @pytest.mark.asyncio
    async def test_upload_empty_file(self, client: AsyncClient) -> None:
        response = await client.post(
            "/alignments/upload",
            files={"file": ("empty.csv", b"", "text/csv")},
            data={"name": "Empty"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_get_and_rename(self, client: AsyncClient, alignment_id: str) -> None:
        listed = await client.get("/alignments")
        renamed = await client.put(f"/alignments/{alignment_id}", json={"name": "ICU v2", "description": ""})
        fetched = await client.get(f"/alignments/{alignment_id}")

        assert [a["id"] for a in listed.json()] == [alignment_id]
        assert renamed.status_code == 200
        assert fetched.json()["name"] == "ICU v2"

    @pytest.mark.asyncio
    async def test_unknown_alignment(self, client: AsyncClient) -> None:
        response = await client.get("/alignments/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_requires_user(self, client: AsyncClient, alignment_id: str, alice: User) -> None:
        anonymous = await client.delete(f"/alignments/{alignment_id}")
        deleted = await client.delete(f"/alignments/{alignment_id}", headers=as_user(alice))
        missing = await client.get(f"/alignments/{alignment_id}")

        assert anonymous.status_code == 401
        assert deleted.status_code == 204
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_user_header(self, client: AsyncClient, alignment_id: str) -> None:
        response = await client.delete(f"/alignments/{alignment_id}", headers={"X-User-Id": "nobody"})

        assert response.status_code == 401


class TestMappingEndpoints:
    """Tests for mapping creation, listing and deletion."""

    @pytest.mark.asyncio
    async def test_create_and_list_mappings(self, client: AsyncClient, alignment_id: str, alice: User) -> None:
        created = await client.post(
            f"/alignments/{alignment_id}/mappings",
            json={"row_id": 3, "target_omop_concept_id": 3027018},
            headers=as_user(alice),
        )
        await client.post(
            f"/alignments/{alignment_id}/mappings",
            json={"row_id": 4, "target_general_concept_id": 1001},
            headers=as_user(alice),
        )

        assert created.status_code == 201
        assert created.json()["mapped_by_user_id"] == alice.id
        assert created.json()["consensus"] == "NotEvaluated"

        everything = await client.get(f"/alignments/{alignment_id}/mappings")
        one_row = await client.get(f"/alignments/{alignment_id}/mappings", params={"row_id": 4})
        assert len(everything.json()) == 2
        assert [m["target_general_concept_id"] for m in one_row.json()] == [1001]

    @pytest.mark.asyncio
    async def test_duplicate_mapping_conflict(self, client: AsyncClient, alignment_id: str, alice: User) -> None:
        payload = {"row_id": 1, "target_omop_concept_id": 3004249}
        await client.post(f"/alignments/{alignment_id}/mappings", json=payload, headers=as_user(alice))

        response = await client.post(f"/alignments/{alignment_id}/mappings", json=payload, headers=as_user(alice))

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_mapping_needs_user_and_target(self, client: AsyncClient, alignment_id: str, alice: User) -> None:
        anonymous = await client.post(
            f"/alignments/{alignment_id}/mappings", json={"row_id": 1, "target_omop_concept_id": 3004249}
        )
        no_target = await client.post(
            f"/alignments/{alignment_id}/mappings", json={"row_id": 1}, headers=as_user(alice)
        )
        unknown_row = await client.post(
            f"/alignments/{alignment_id}/mappings",
            json={"row_id": 42, "target_omop_concept_id": 3004249},
            headers=as_user(alice),
        )

        assert anonymous.status_code == 401
        assert no_target.status_code == 400
        assert unknown_row.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_mapping(self, client: AsyncClient, alignment_id: str, alice: User) -> None:
        created = await client.post(
            f"/alignments/{alignment_id}/mappings",
            json={"row_id": 1, "target_omop_concept_id": 3004249},
            headers=as_user(alice),
        )
        mapping_id = created.json()["id"]

        deleted = await client.delete(f"/mappings/{mapping_id}", headers=as_user(alice))
        again = await client.delete(f"/mappings/{mapping_id}", headers=as_user(alice))

        assert deleted.status_code == 204
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_summary_counts(self, client: AsyncClient, alignment_id: str, alice: User) -> None:
        await client.post(
            f"/alignments/{alignment_id}/mappings",
            json={"row_id": 1, "target_omop_concept_id": 3004249},
            headers=as_user(alice),
        )

        response = await client.get(f"/alignments/{alignment_id}/summary")

        data = response.json()
        assert data["source_rows"] == 4
        assert data["mapped_rows"] == 1
        assert data["by_status"]["NotEvaluated"] == 1
