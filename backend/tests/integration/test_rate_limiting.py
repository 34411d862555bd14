"""Integration tests for rate limiting middleware."""
import pytest
from httpx import AsyncClient
from starlette.requests import Request

from api.middleware.rate_limit import get_client_ip

pytestmark = pytest.mark.asyncio


def _request(headers: dict[str, str], client_host: str = "10.0.0.5") -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": (client_host, 1234),
    }
    return Request(scope)


class TestRateLimitingSubscriptionCreation:
    """Tests for rate limiting on subscription creation."""

    async def test_create_subscription_rate_limit_exceeded(self, async_client: AsyncClient):
        """Subscription creation allows 10 requests per minute."""
        for _ in range(10):
            response = await async_client.post(
                "/api/create-subscription",
                json={"customerForeignId": "cust_A", "planForeignId": "plan_monthly"},
            )
            assert response.status_code == 201

        response = await async_client.post(
            "/api/create-subscription",
            json={"customerForeignId": "cust_A", "planForeignId": "plan_monthly"},
        )
        assert response.status_code == 429

    async def test_rejected_requests_count_too(self, async_client: AsyncClient):
        """Validation failures still consume the budget."""
        for _ in range(10):
            response = await async_client.post("/api/create-subscription", json={})
            assert response.status_code == 400

        response = await async_client.post("/api/create-subscription", json={})
        assert response.status_code == 429


class TestRateLimitingStatusCheck:
    """Tests for rate limiting on manual status checks."""

    async def test_check_subscription_rate_limit_exceeded(self, async_client: AsyncClient):
        """Manual checks allow 30 requests per minute."""
        for _ in range(30):
            response = await async_client.post("/api/check-subscription/sub_missing")
            assert response.status_code == 404

        response = await async_client.post("/api/check-subscription/sub_missing")
        assert response.status_code == 429

        data = response.json()
        assert "detail" in data or "error" in data


class TestRateLimitingDifferentEndpoints:
    """Tests that rate limits are independent per endpoint."""

    async def test_different_endpoints_have_independent_limits(self, async_client: AsyncClient):
        for _ in range(10):
            await async_client.post("/api/create-subscription", json={})

        response = await async_client.post("/api/create-subscription", json={})
        assert response.status_code == 429

        # Status checks have their own bucket
        response = await async_client.post("/api/check-subscription/sub_missing")
        assert response.status_code == 404


class TestClientIp:
    """Tests for the rate limit key function."""

    async def test_public_forwarded_ip_is_used(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.7"

    async def test_private_forwarded_ip_is_ignored(self):
        request = _request({"X-Forwarded-For": "192.168.1.10"})
        assert get_client_ip(request) == "10.0.0.5"

    async def test_real_ip_header(self):
        request = _request({"X-Real-IP": "198.51.100.20"})
        assert get_client_ip(request) == "198.51.100.20"

    async def test_garbage_header_falls_back_to_peer(self):
        request = _request({"X-Forwarded-For": "not-an-ip"})
        assert get_client_ip(request) == "10.0.0.5"
