"""
Razorpay adapter for customers, plans, subscriptions, addons, orders and payments.

Implements the PaymentProcessor contract over the Razorpay REST API and
parses inbound webhook bodies into WebhookEvent objects.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from core.domain.subscription import from_unix, to_unix
from core.errors import ProcessorError, ProcessorNotFoundError
from core.interfaces.services import (
    PaymentProcessor,
    ProcessorAddon,
    ProcessorCustomer,
    ProcessorOrder,
    ProcessorPayment,
    ProcessorPlan,
    ProcessorSubscription,
)
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class RazorpayError(ProcessorError):
    """Base exception for Razorpay adapter errors."""

    pass


class RazorpayAPIError(RazorpayError):
    """Raised when the Razorpay API rejects a request or cannot be reached."""

    pass


class RazorpayNotFoundError(RazorpayAPIError, ProcessorNotFoundError):
    """Raised when Razorpay has no record for the requested id."""

    pass


class RazorpayAuthError(RazorpayAPIError):
    """Raised when API credentials are missing or rejected."""

    pass


class RazorpayWebhookError(RazorpayError):
    """Raised when a webhook body cannot be parsed."""

    pass


# Response parsers
def parse_customer(data: dict[str, Any]) -> ProcessorCustomer:
    """Create customer from API response data."""
    return ProcessorCustomer(
        id=data.get("id", ""),
        name=data.get("name") or "",
        email=data.get("email") or "",
        contact=data.get("contact") or "",
        notes=_notes(data.get("notes")),
    )


def parse_plan(data: dict[str, Any]) -> ProcessorPlan:
    """Create plan from API response data; the billable item sits under `item`."""
    item = data.get("item") or {}
    return ProcessorPlan(
        id=data.get("id", ""),
        name=item.get("name") or "",
        description=item.get("description") or "",
        amount=int(item.get("amount") or 0),
        currency=item.get("currency") or settings.default_currency,
        period=data.get("period") or "monthly",
        interval=int(data.get("interval") or 1),
    )


def parse_subscription(data: dict[str, Any]) -> ProcessorSubscription:
    """Create subscription from API response or webhook entity data."""
    total_count = data.get("total_count")
    return ProcessorSubscription(
        id=data.get("id", ""),
        plan_id=data.get("plan_id") or "",
        customer_id=data.get("customer_id"),
        status=data.get("status") or "created",
        total_count=int(total_count) if total_count is not None else None,
        paid_count=int(data.get("paid_count") or 0),
        start_at=from_unix(data.get("start_at")),
        charge_at=from_unix(data.get("charge_at")),
        current_start=from_unix(data.get("current_start")),
        current_end=from_unix(data.get("current_end")),
        end_at=from_unix(data.get("end_at")),
        short_url=data.get("short_url"),
        notes=_notes(data.get("notes")),
    )


def parse_payment(data: dict[str, Any]) -> ProcessorPayment:
    """Create payment from API response or webhook entity data."""
    return ProcessorPayment(
        id=data.get("id", ""),
        order_id=data.get("order_id"),
        amount=int(data.get("amount") or 0),
        currency=data.get("currency") or settings.default_currency,
        status=data.get("status") or "created",
        method=data.get("method"),
        customer_id=data.get("customer_id"),
        raw=data,
    )


def parse_order(data: dict[str, Any]) -> ProcessorOrder:
    return ProcessorOrder(
        id=data.get("id", ""),
        amount=int(data.get("amount") or 0),
        currency=data.get("currency") or settings.default_currency,
        receipt=data.get("receipt"),
        status=data.get("status") or "created",
    )


def parse_addon(data: dict[str, Any]) -> ProcessorAddon:
    item = data.get("item") or {}
    return ProcessorAddon(
        id=data.get("id", ""),
        name=item.get("name") or "",
        amount=int(item.get("amount") or 0),
        currency=item.get("currency") or settings.default_currency,
        quantity=int(data.get("quantity") or 1),
    )


def _notes(value: Any) -> dict[str, Any]:
    # Razorpay serialises empty notes as [] instead of {}
    return value if isinstance(value, dict) else {}


@dataclass
class WebhookEvent:
    """Razorpay webhook event data."""

    event: str  # subscription.activated, payment.captured, etc.
    entity_kind: str | None  # subscription, payment, order, invoice
    entity_id: str | None
    entity: dict[str, Any]
    created_at: datetime | None
    payload: dict[str, Any] = field(default_factory=dict)

    # Entity kinds checked in order; the event prefix wins when present
    ENTITY_KINDS = ("subscription", "payment", "order", "invoice")

    @classmethod
    def from_webhook_payload(cls, body: dict[str, Any]) -> "WebhookEvent":
        """Create webhook event from a decoded body."""
        event = body.get("event") or ""
        payload = body.get("payload") or {}

        prefix = event.split(".", 1)[0]
        kinds = [prefix] + [k for k in cls.ENTITY_KINDS if k != prefix]
        entity_kind = next((k for k in kinds if k in payload), None)
        entity = (payload.get(entity_kind) or {}).get("entity", {}) if entity_kind else {}

        return cls(
            event=event,
            entity_kind=entity_kind,
            entity_id=entity.get("id"),
            entity=entity,
            created_at=from_unix(body.get("created_at")),
            payload=payload,
        )


def parse_webhook_event(raw_body: bytes) -> WebhookEvent:
    """
    Parse a raw webhook body into a WebhookEvent.

    Raises:
        RazorpayWebhookError: If the body is not a JSON object with an event name
    """
    try:
        body = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RazorpayWebhookError(f"Webhook body is not valid JSON: {e}") from e

    if not isinstance(body, dict) or not body.get("event"):
        raise RazorpayWebhookError("Webhook body has no event name")

    return WebhookEvent.from_webhook_payload(body)


class RazorpayAdapter(PaymentProcessor):
    """
    Razorpay API adapter.

    All amounts are integer minor units (paise for INR), exactly as the API
    expects them. Every failure, including timeouts, surfaces as a
    RazorpayError so callers never mistake a lost response for success.
    """

    API_BASE_URL = "https://api.razorpay.com/v1"

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize Razorpay adapter.

        Args:
            key_id: Razorpay key id (defaults to settings)
            key_secret: Razorpay key secret (defaults to settings)
            base_url: API base URL (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
        """
        self.key_id = key_id or settings.razorpay_key_id
        self.key_secret = key_secret or settings.razorpay_key_secret
        self.base_url = (base_url or settings.razorpay_api_base_url or self.API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.razorpay_timeout

        if not self.key_id or not self.key_secret:
            logger.warning(
                "Razorpay credentials not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )

    def _get_auth(self) -> tuple[str, str]:
        """Basic auth pair for API requests."""
        if not self.key_id or not self.key_secret:
            raise RazorpayAuthError(
                "Razorpay credentials not configured",
                code="AUTHENTICATION_ERROR",
            )
        return (self.key_id, self.key_secret)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to Razorpay API.

        Args:
            method: HTTP method (GET, POST, PATCH)
            endpoint: API endpoint path
            data: JSON request body

        Returns:
            API response as dictionary

        Raises:
            RazorpayNotFoundError: If the referenced id does not exist
            RazorpayAuthError: If the credentials are rejected
            RazorpayAPIError: For any other rejection, transport error or timeout
        """
        url = f"{self.base_url}/{endpoint}"
        auth = self._get_auth()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, auth=auth) as client:
                logger.info(f"Making {method} request to {endpoint}")
                response = await client.request(method, url, json=data)
        except httpx.TimeoutException as e:
            logger.error(f"Razorpay request to {endpoint} timed out: {e}")
            raise RazorpayAPIError(f"Request timed out: {e}", code="GATEWAY_TIMEOUT") from e
        except httpx.RequestError as e:
            logger.error(f"HTTP request error: {e}")
            raise RazorpayAPIError(f"Request failed: {e}", code="GATEWAY_ERROR") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        error = body.get("error") if isinstance(body, dict) else None
        if response.status_code >= 400 or error:
            raise self._to_error(response.status_code, error or {})

        return body

    @staticmethod
    def _to_error(status_code: int, error: dict[str, Any]) -> RazorpayError:
        """Map a Razorpay error body onto the adapter's exception types."""
        code = error.get("code") or "PROCESSOR_ERROR"
        description = error.get("description") or f"Razorpay returned HTTP {status_code}"
        logger.error(f"Razorpay API error ({status_code}) {code}: {description}")

        if status_code == 401:
            return RazorpayAuthError(description, code=code, status_code=status_code)
        if status_code == 404 or "does not exist" in description.lower():
            return RazorpayNotFoundError(description, code=code, status_code=status_code)
        return RazorpayAPIError(description, code=code, status_code=status_code)

    async def create_customer(
        self,
        name: str,
        email: str,
        contact: str,
        notes: dict[str, Any] | None = None,
    ) -> ProcessorCustomer:
        """
        Create a customer.

        `fail_existing=0` makes Razorpay return the existing customer for a
        known email instead of rejecting the request.
        """
        logger.info("Creating Razorpay customer")
        response = await self._make_request(
            "POST",
            "customers",
            data={
                "name": name,
                "email": email,
                "contact": contact,
                "fail_existing": "0",
                "notes": notes or {},
            },
        )
        return parse_customer(response)

    async def fetch_customer(self, customer_id: str) -> ProcessorCustomer:
        logger.info(f"Fetching customer {customer_id}")
        response = await self._make_request("GET", f"customers/{customer_id}")
        return parse_customer(response)

    async def fetch_plan(self, plan_id: str) -> ProcessorPlan:
        logger.info(f"Fetching plan {plan_id}")
        response = await self._make_request("GET", f"plans/{plan_id}")
        return parse_plan(response)

    async def create_subscription(
        self,
        plan_id: str,
        customer_id: str,
        total_count: int,
        expire_by: datetime,
        start_at: datetime | None = None,
        addons: list[dict[str, Any]] | None = None,
        notes: dict[str, Any] | None = None,
    ) -> ProcessorSubscription:
        """
        Create a subscription.

        Args:
            plan_id: Razorpay plan id
            customer_id: Razorpay customer id
            total_count: Number of billing cycles
            expire_by: Deadline for the customer to authenticate
            start_at: Scheduled start (omitted for immediate subscriptions)
            addons: Upfront charges, each {"name", "amount", "currency"}
            notes: Free-form notes echoed back in webhooks

        Returns:
            ProcessorSubscription object
        """
        data: dict[str, Any] = {
            "plan_id": plan_id,
            "customer_id": customer_id,
            "total_count": total_count,
            "expire_by": to_unix(expire_by),
            "customer_notify": 1,
            "notes": notes or {},
        }
        if start_at is not None:
            data["start_at"] = to_unix(start_at)
        if addons:
            data["addons"] = [
                {
                    "item": {
                        "name": addon["name"],
                        "amount": int(addon["amount"]),
                        "currency": addon.get("currency") or settings.default_currency,
                    }
                }
                for addon in addons
            ]

        logger.info(f"Creating subscription for plan {plan_id}")
        response = await self._make_request("POST", "subscriptions", data=data)
        return parse_subscription(response)

    async def fetch_subscription(self, subscription_id: str) -> ProcessorSubscription:
        logger.info(f"Fetching subscription {subscription_id}")
        response = await self._make_request("GET", f"subscriptions/{subscription_id}")
        return parse_subscription(response)

    async def create_addon(
        self,
        subscription_id: str,
        name: str,
        amount: int,
        currency: str,
        quantity: int = 1,
    ) -> ProcessorAddon:
        """Add a one-time charge to the subscription's next invoice."""
        logger.info(f"Creating addon for subscription {subscription_id}")
        response = await self._make_request(
            "POST",
            f"subscriptions/{subscription_id}/addons",
            data={
                "item": {"name": name, "amount": amount, "currency": currency},
                "quantity": quantity,
            },
        )
        return parse_addon(response)

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str | None = None,
        notes: dict[str, Any] | None = None,
    ) -> ProcessorOrder:
        logger.info(f"Creating order for {amount} {currency}")
        data: dict[str, Any] = {"amount": amount, "currency": currency, "notes": notes or {}}
        if receipt:
            data["receipt"] = receipt
        response = await self._make_request("POST", "orders", data=data)
        return parse_order(response)

    async def capture_payment(
        self,
        payment_id: str,
        amount: int,
        currency: str,
    ) -> ProcessorPayment:
        """Capture an authorized payment."""
        logger.info(f"Capturing payment {payment_id}")
        response = await self._make_request(
            "POST",
            f"payments/{payment_id}/capture",
            data={"amount": amount, "currency": currency},
        )
        return parse_payment(response)


# Factory function for easy instantiation
def create_razorpay_adapter(
    key_id: str | None = None,
    key_secret: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> RazorpayAdapter:
    """
    Create a Razorpay adapter instance.

    Args:
        key_id: Razorpay key id (defaults to settings)
        key_secret: Razorpay key secret (defaults to settings)
        base_url: API base URL (defaults to settings)
        timeout: Request timeout in seconds (defaults to settings)

    Returns:
        RazorpayAdapter instance
    """
    return RazorpayAdapter(
        key_id=key_id,
        key_secret=key_secret,
        base_url=base_url,
        timeout=timeout,
    )
