"""Service interfaces for external integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ProcessorCustomer:
    """Customer as known to the payment processor."""

    id: str
    name: str
    email: str
    contact: str
    notes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessorPlan:
    """Plan as known to the payment processor. Amount is in minor units."""

    id: str
    name: str
    description: str
    amount: int
    currency: str
    period: str
    interval: int


@dataclass
class ProcessorSubscription:
    """Subscription as known to the payment processor."""

    id: str
    plan_id: str
    customer_id: str | None
    status: str
    total_count: int | None = None
    paid_count: int = 0
    start_at: datetime | None = None
    charge_at: datetime | None = None
    current_start: datetime | None = None
    current_end: datetime | None = None
    end_at: datetime | None = None
    short_url: str | None = None
    notes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessorPayment:
    """Payment as known to the payment processor. Amount is in minor units."""

    id: str
    order_id: str | None
    amount: int
    currency: str
    status: str
    method: str | None = None
    customer_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessorOrder:
    """One-off order at the payment processor."""

    id: str
    amount: int
    currency: str
    receipt: str | None
    status: str


@dataclass
class ProcessorAddon:
    """Addon attached to a subscription's next invoice."""

    id: str
    name: str
    amount: int
    currency: str
    quantity: int


class PaymentProcessor(ABC):
    """Abstract client for the payment processor.

    Implementations raise core.errors.ProcessorError (or a subclass) for any
    rejected call, transport failure or timeout, and NotFoundError-flavoured
    subclasses when the processor has no record for an id.
    """

    @abstractmethod
    async def create_customer(
        self,
        name: str,
        email: str,
        contact: str,
        notes: dict[str, Any] | None = None,
    ) -> ProcessorCustomer:
        """Create a customer, returning the existing one for a known email."""
        ...

    @abstractmethod
    async def fetch_customer(self, customer_id: str) -> ProcessorCustomer:
        ...

    @abstractmethod
    async def fetch_plan(self, plan_id: str) -> ProcessorPlan:
        ...

    @abstractmethod
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
        ...

    @abstractmethod
    async def fetch_subscription(self, subscription_id: str) -> ProcessorSubscription:
        ...

    @abstractmethod
    async def create_addon(
        self,
        subscription_id: str,
        name: str,
        amount: int,
        currency: str,
        quantity: int = 1,
    ) -> ProcessorAddon:
        ...

    @abstractmethod
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str | None = None,
        notes: dict[str, Any] | None = None,
    ) -> ProcessorOrder:
        ...

    @abstractmethod
    async def capture_payment(
        self,
        payment_id: str,
        amount: int,
        currency: str,
    ) -> ProcessorPayment:
        ...
