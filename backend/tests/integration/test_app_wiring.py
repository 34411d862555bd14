"""Integration tests for application-level middleware."""
import uuid

import pytest
from fastapi import status
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


class TestRequestId:
    async def test_generated_when_missing(self, async_client: AsyncClient):
        response = await async_client.get("/api/health")

        uuid.UUID(response.headers["X-Request-ID"])

    async def test_valid_caller_id_is_echoed(self, async_client: AsyncClient):
        request_id = str(uuid.uuid4())

        response = await async_client.get("/api/health", headers={"X-Request-ID": request_id})

        assert response.headers["X-Request-ID"] == request_id

    async def test_non_uuid_caller_id_is_replaced(self, async_client: AsyncClient):
        response = await async_client.get("/api/health", headers={"X-Request-ID": "not-a-uuid"})

        assert response.headers["X-Request-ID"] != "not-a-uuid"
        uuid.UUID(response.headers["X-Request-ID"])


class TestBodySizeLimit:
    async def test_oversized_webhook_is_rejected_before_processing(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/webhook",
            content=b"x" * (1024 * 1024 + 1),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE

    async def test_normal_body_passes(self, async_client: AsyncClient):
        response = await async_client.post("/api/create-subscription", json={})

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestTiming:
    async def test_response_time_header(self, async_client: AsyncClient):
        response = await async_client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["health"] == "/api/health"
        assert response.headers["X-Response-Time"].endswith("ms")
