"""
Unit tests for the Razorpay adapter.

Tests the Razorpay API integration including:
- Response parsing into processor records
- Subscription creation payloads
- Error mapping (not found, auth, timeouts)
- Webhook body parsing
"""

import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from adapters.payments.razorpay_adapter import (
    RazorpayAdapter,
    RazorpayAPIError,
    RazorpayAuthError,
    RazorpayNotFoundError,
    RazorpayWebhookError,
    create_razorpay_adapter,
    parse_webhook_event,
)
from core.errors import ProcessorError, ProcessorNotFoundError

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


@pytest.fixture
def adapter():
    """Create RazorpayAdapter instance with test credentials."""
    return RazorpayAdapter(
        key_id="rzp_test_abc",
        key_secret="secret_123",
        base_url="https://api.razorpay.test/v1",
        timeout=5.0,
    )


@pytest.fixture
def mock_plan_response() -> dict[str, Any]:
    """Mock successful plan API response."""
    return {
        "id": "plan_00000000000001",
        "entity": "plan",
        "interval": 3,
        "period": "monthly",
        "item": {
            "id": "item_00000000000001",
            "name": "Quarterly Pro",
            "description": "Billed every 3 months",
            "amount": 135000,
            "currency": "INR",
        },
        "notes": [],
    }


@pytest.fixture
def mock_subscription_response() -> dict[str, Any]:
    """Mock successful subscription API response."""
    return {
        "id": "sub_00000000000001",
        "entity": "subscription",
        "plan_id": "plan_00000000000001",
        "customer_id": "cust_00000000000001",
        "status": "created",
        "current_start": None,
        "current_end": None,
        "charge_at": 1705314600,
        "start_at": 1705314600,
        "end_at": 1728988200,
        "total_count": 4,
        "paid_count": 0,
        "short_url": "https://rzp.io/i/abc",
        "notes": {"is_renewal": "false"},
    }


def _response(status_code: int, body: dict[str, Any] | None = None) -> httpx.Response:
    return httpx.Response(status_code, json=body if body is not None else {})


class TestAdapterInitialization:
    def test_factory_creates_adapter(self):
        adapter = create_razorpay_adapter(key_id="k", key_secret="s")
        assert isinstance(adapter, RazorpayAdapter)
        assert adapter.key_id == "k"

    def test_base_url_trailing_slash_is_trimmed(self):
        adapter = RazorpayAdapter(key_id="k", key_secret="s", base_url="https://x.test/v1/")
        assert adapter.base_url == "https://x.test/v1"


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_plan_parses_item(self, adapter, mock_plan_response):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, mock_plan_response)

            plan = await adapter.fetch_plan("plan_00000000000001")

            assert plan.id == "plan_00000000000001"
            assert plan.name == "Quarterly Pro"
            assert plan.amount == 135000
            assert plan.period == "monthly"
            assert plan.interval == 3
            method, url = mock_request.call_args.args[:2]
            assert method == "GET"
            assert url == "https://api.razorpay.test/v1/plans/plan_00000000000001"

    @pytest.mark.asyncio
    async def test_fetch_subscription_converts_timestamps(self, adapter, mock_subscription_response):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, mock_subscription_response)

            subscription = await adapter.fetch_subscription("sub_00000000000001")

            assert subscription.status == "created"
            assert subscription.start_at == NOW
            assert subscription.current_start is None
            assert subscription.total_count == 4
            assert subscription.notes == {"is_renewal": "false"}

    @pytest.mark.asyncio
    async def test_fetch_customer_with_empty_notes(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(
                200,
                {"id": "cust_1", "name": "A", "email": "a@x.com", "contact": "+911234567890", "notes": []},
            )

            customer = await adapter.fetch_customer("cust_1")

            assert customer.email == "a@x.com"
            assert customer.notes == {}


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_subscription_payload(self, adapter, mock_subscription_response):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, mock_subscription_response)

            await adapter.create_subscription(
                plan_id="plan_00000000000001",
                customer_id="cust_00000000000001",
                total_count=4,
                expire_by=NOW,
                start_at=NOW,
                addons=[{"name": "Setup fee", "amount": 50000}],
                notes={"is_renewal": "true"},
            )

            sent = mock_request.call_args.kwargs["json"]
            assert sent["total_count"] == 4
            assert sent["expire_by"] == 1705314600
            assert sent["start_at"] == 1705314600
            assert sent["addons"] == [
                {"item": {"name": "Setup fee", "amount": 50000, "currency": "INR"}}
            ]
            assert sent["notes"] == {"is_renewal": "true"}

    @pytest.mark.asyncio
    async def test_immediate_subscription_omits_start_at(self, adapter, mock_subscription_response):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, mock_subscription_response)

            await adapter.create_subscription(
                plan_id="plan_1", customer_id="cust_1", total_count=12, expire_by=NOW
            )

            sent = mock_request.call_args.kwargs["json"]
            assert "start_at" not in sent
            assert "addons" not in sent

    @pytest.mark.asyncio
    async def test_create_customer_does_not_fail_on_existing(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(
                200, {"id": "cust_1", "name": "A", "email": "a@x.com", "contact": "+911234567890"}
            )

            customer = await adapter.create_customer("A", "a@x.com", "+911234567890")

            assert customer.id == "cust_1"
            assert mock_request.call_args.kwargs["json"]["fail_existing"] == "0"

    @pytest.mark.asyncio
    async def test_capture_payment(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(
                200,
                {"id": "pay_1", "order_id": "order_1", "amount": 50000, "currency": "INR",
                 "status": "captured", "method": "card"},
            )

            payment = await adapter.capture_payment("pay_1", 50000, "INR")

            assert payment.status == "captured"
            assert payment.raw["method"] == "card"
            assert mock_request.call_args.args[1].endswith("/payments/pay_1/capture")


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_unknown_id_maps_to_not_found(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(
                400,
                {"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
            )

            with pytest.raises(RazorpayNotFoundError) as exc_info:
                await adapter.fetch_plan("plan_missing")

            assert isinstance(exc_info.value, ProcessorNotFoundError)
            assert exc_info.value.code == "BAD_REQUEST_ERROR"
            assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_request_keeps_processor_description(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(
                400,
                {"error": {"code": "BAD_REQUEST_ERROR", "description": "total_count must be at least 1"}},
            )

            with pytest.raises(RazorpayAPIError) as exc_info:
                await adapter.create_subscription("plan_1", "cust_1", 0, NOW)

            assert not isinstance(exc_info.value, RazorpayNotFoundError)
            assert exc_info.value.to_dict() == {
                "code": "BAD_REQUEST_ERROR",
                "description": "total_count must be at least 1",
            }

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(
                401, {"error": {"code": "BAD_REQUEST_ERROR", "description": "Authentication failed"}}
            )

            with pytest.raises(RazorpayAuthError):
                await adapter.fetch_plan("plan_1")

    @pytest.mark.asyncio
    async def test_timeout_is_an_error(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = httpx.ReadTimeout("timed out")

            with pytest.raises(RazorpayAPIError) as exc_info:
                await adapter.create_subscription("plan_1", "cust_1", 12, NOW)

            assert exc_info.value.code == "GATEWAY_TIMEOUT"
            assert isinstance(exc_info.value, ProcessorError)

    @pytest.mark.asyncio
    async def test_connection_error(self, adapter):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = httpx.ConnectError("connection refused")

            with pytest.raises(RazorpayAPIError):
                await adapter.fetch_customer("cust_1")

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        adapter = RazorpayAdapter(key_id="k", key_secret="s")
        adapter.key_secret = None

        with pytest.raises(RazorpayAuthError):
            await adapter.fetch_plan("plan_1")


class TestWebhookParsing:
    def test_subscription_event(self, mock_subscription_response):
        body = json.dumps(
            {
                "entity": "event",
                "event": "subscription.activated",
                "payload": {"subscription": {"entity": mock_subscription_response}},
                "created_at": 1705314600,
            }
        ).encode()

        event = parse_webhook_event(body)

        assert event.event == "subscription.activated"
        assert event.entity_kind == "subscription"
        assert event.entity_id == "sub_00000000000001"
        assert event.created_at == NOW

    def test_charged_event_prefers_subscription_entity(self, mock_subscription_response):
        body = json.dumps(
            {
                "event": "subscription.charged",
                "payload": {
                    "payment": {"entity": {"id": "pay_1", "amount": 135000}},
                    "subscription": {"entity": mock_subscription_response},
                },
            }
        ).encode()

        event = parse_webhook_event(body)

        assert event.entity_kind == "subscription"
        assert event.payload["payment"]["entity"]["id"] == "pay_1"

    def test_payment_event(self):
        body = b'{"event":"payment.captured","payload":{"payment":{"entity":{"id":"pay_1"}}}}'

        event = parse_webhook_event(body)

        assert event.entity_kind == "payment"
        assert event.entity_id == "pay_1"
        assert event.created_at is None

    @pytest.mark.parametrize("body", [b"not json", b"[]", b'{"payload": {}}'])
    def test_malformed_body(self, body):
        with pytest.raises(RazorpayWebhookError):
            parse_webhook_event(body)
