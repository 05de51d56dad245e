"""Tests for the user registry endpoints."""

import pytest
from httpx import AsyncClient


class TestUserEndpoints:
    @pytest.mark.asyncio
    async def test_register_and_list(self, client: AsyncClient) -> None:
        created = await client.post("/users", json={"login": "dmitri", "first_name": " Dmitri ", "last_name": "Petrov"})
        await client.post("/users", json={"login": "ana", "first_name": "Ana", "last_name": "Silva"})

        assert created.status_code == 201
        assert created.json()["display_name"] == "Dmitri Petrov"
        listed = (await client.get("/users")).json()
        assert [u["login"] for u in listed] == ["ana", "dmitri"]

    @pytest.mark.asyncio
    async def test_duplicate_login(self, client: AsyncClient) -> None:
        await client.post("/users", json={"login": "ana"})

        response = await client.post("/users", json={"login": "ana", "first_name": "Other"})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_registered_user_can_act(self, client: AsyncClient, alignment_id: str) -> None:
        user_id = (await client.post("/users", json={"login": "ana", "first_name": "Ana"})).json()["id"]

        response = await client.post(
            f"/alignments/{alignment_id}/mappings",
            json={"row_id": 1, "target_omop_concept_id": 3004249},
            headers={"X-User-Id": user_id},
        )

        assert response.status_code == 201
        assert response.json()["mapped_by_user_id"] == user_id
