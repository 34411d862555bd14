"""
Pytest configuration and shared fixtures for backend tests.
"""

import hashlib
import hmac
import os
import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, AsyncGenerator

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read at import time; point them at test values first
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
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
from core.security.webhook_signature import WebhookSignatureVerifier
from infrastructure.database.connection import get_db, get_session_factory
from infrastructure.database.models import Base

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WEBHOOK_SECRET = "test_webhook_secret"

# Fixed "now" for deterministic date arithmetic
NOW = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


def sign(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Hex HMAC-SHA256 signature, as the processor sends it."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _not_found(kind: str) -> ProcessorNotFoundError:
    return ProcessorNotFoundError(
        "The id provided does not exist",
        code="BAD_REQUEST_ERROR",
        status_code=400,
    )


class FakeProcessor(PaymentProcessor):
    """In-memory stand-in for the Razorpay API."""

    def __init__(self):
        self.customers: dict[str, ProcessorCustomer] = {}
        self.plans: dict[str, ProcessorPlan] = {}
        self.subscriptions: dict[str, ProcessorSubscription] = {}
        self.payments: dict[str, ProcessorPayment] = {}
        self.subscription_requests: list[dict[str, Any]] = []
        self.fetch_plan_calls = 0
        self.fetch_customer_calls = 0
        # Raised by the next create_subscription call, then cleared
        self.fail_next_subscription: ProcessorError | None = None
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter:014d}"

    def add_plan(
        self,
        plan_id: str,
        amount: int = 50000,
        period: str = "monthly",
        interval: int = 1,
        name: str = "Pro",
    ) -> ProcessorPlan:
        plan = ProcessorPlan(
            id=plan_id,
            name=name,
            description=f"{name} plan",
            amount=amount,
            currency="INR",
            period=period,
            interval=interval,
        )
        self.plans[plan_id] = plan
        return plan

    def add_customer(
        self,
        customer_id: str,
        name: str = "A",
        email: str = "a@x.com",
        contact: str = "+911234567890",
    ) -> ProcessorCustomer:
        customer = ProcessorCustomer(id=customer_id, name=name, email=email, contact=contact)
        self.customers[customer_id] = customer
        return customer

    def add_payment(
        self,
        payment_id: str,
        amount: int = 50000,
        status: str = "authorized",
        order_id: str | None = None,
    ) -> ProcessorPayment:
        payment = ProcessorPayment(
            id=payment_id,
            order_id=order_id,
            amount=amount,
            currency="INR",
            status=status,
            method="upi",
            raw={"id": payment_id, "amount": amount, "status": status},
        )
        self.payments[payment_id] = payment
        return payment

    async def create_customer(self, name, email, contact, notes=None):
        for customer in self.customers.values():
            if customer.email == email:
                return customer
        customer = ProcessorCustomer(
            id=self._next_id("cust"), name=name, email=email, contact=contact, notes=notes or {}
        )
        self.customers[customer.id] = customer
        return customer

    async def fetch_customer(self, customer_id):
        self.fetch_customer_calls += 1
        if customer_id not in self.customers:
            raise _not_found("customer")
        return self.customers[customer_id]

    async def fetch_plan(self, plan_id):
        self.fetch_plan_calls += 1
        if plan_id not in self.plans:
            raise _not_found("plan")
        return self.plans[plan_id]

    async def create_subscription(
        self,
        plan_id,
        customer_id,
        total_count,
        expire_by,
        start_at=None,
        addons=None,
        notes=None,
    ):
        self.subscription_requests.append(
            {
                "plan_id": plan_id,
                "customer_id": customer_id,
                "total_count": total_count,
                "expire_by": expire_by,
                "start_at": start_at,
                "addons": addons,
                "notes": notes,
            }
        )
        if self.fail_next_subscription is not None:
            error, self.fail_next_subscription = self.fail_next_subscription, None
            raise error
        if plan_id not in self.plans:
            raise _not_found("plan")

        subscription = ProcessorSubscription(
            id=self._next_id("sub"),
            plan_id=plan_id,
            customer_id=customer_id,
            status="created",
            total_count=total_count,
            paid_count=0,
            start_at=start_at,
            short_url="https://rzp.io/i/test",
            notes=dict(notes or {}),
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    async def fetch_subscription(self, subscription_id):
        if subscription_id not in self.subscriptions:
            raise _not_found("subscription")
        return self.subscriptions[subscription_id]

    async def create_addon(self, subscription_id, name, amount, currency, quantity=1):
        if subscription_id not in self.subscriptions:
            raise _not_found("subscription")
        return ProcessorAddon(
            id=self._next_id("ao"), name=name, amount=amount, currency=currency, quantity=quantity
        )

    async def create_order(self, amount, currency, receipt=None, notes=None):
        return ProcessorOrder(
            id=self._next_id("order"), amount=amount, currency=currency, receipt=receipt, status="created"
        )

    async def capture_payment(self, payment_id, amount, currency):
        if payment_id not in self.payments:
            raise _not_found("payment")
        payment = self.payments[payment_id]
        payment.status = "captured"
        payment.raw = {**payment.raw, "status": "captured"}
        return payment


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_processor() -> FakeProcessor:
    """Processor with one customer and monthly, quarterly and yearly plans."""
    processor = FakeProcessor()
    processor.add_customer("cust_A")
    processor.add_plan("plan_monthly", amount=50000, period="monthly", interval=1, name="Monthly")
    processor.add_plan("plan_quarterly", amount=135000, period="monthly", interval=3, name="Quarterly")
    processor.add_plan("plan_yearly", amount=500000, period="yearly", interval=1, name="Yearly")
    return processor


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    fake_processor: FakeProcessor,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from api.dependencies import get_processor, get_webhook_verifier
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    @asynccontextmanager
    async def shared_session():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: shared_session
    app.dependency_overrides[get_processor] = lambda: fake_processor
    app.dependency_overrides[get_webhook_verifier] = lambda: WebhookSignatureVerifier(WEBHOOK_SECRET)

    # Reset rate limiter state between tests to prevent cross-test 429s
    if hasattr(app.state, "limiter"):
        app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def webhook_body(
    event: str,
    entity_kind: str,
    entity: dict[str, Any],
    created_at: datetime | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Razorpay-shaped webhook envelope."""
    payload = {entity_kind: {"entity": entity}}
    payload.update(extra or {})
    return {
        "entity": "event",
        "event": event,
        "contains": list(payload),
        "payload": payload,
        "created_at": int((created_at or NOW).timestamp()),
    }


def subscription_entity(
    subscription_id: str,
    status: str,
    plan_id: str = "plan_monthly",
    customer_id: str = "cust_A",
    paid_count: int = 0,
    total_count: int = 12,
    current_start: datetime | None = None,
) -> dict[str, Any]:
    start = current_start or NOW
    return {
        "id": subscription_id,
        "entity": "subscription",
        "plan_id": plan_id,
        "customer_id": customer_id,
        "status": status,
        "total_count": total_count,
        "paid_count": paid_count,
        "current_start": int(start.timestamp()),
        "current_end": int((start + timedelta(days=30)).timestamp()),
        "charge_at": int((start + timedelta(days=30)).timestamp()),
        "start_at": int(start.timestamp()),
        "short_url": "https://rzp.io/i/test",
        "notes": [],
    }
