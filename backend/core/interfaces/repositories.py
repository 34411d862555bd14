"""Repository interfaces for data access."""

from abc import ABC, abstractmethod
from typing import Any, TypeVar

T = TypeVar("T")


class BillingRepository(ABC):
    """Abstract store for customers, plans, subscriptions and payments.

    Every record is addressable by its processor-issued foreign id, which the
    store keeps unique.
    """

    @abstractmethod
    async def find_customer(self, processor_customer_id: str) -> Any | None:
        """Get customer by processor id."""
        ...

    @abstractmethod
    async def find_plan(self, processor_plan_id: str) -> Any | None:
        """Get plan by processor id."""
        ...

    @abstractmethod
    async def find_subscription(self, processor_subscription_id: str) -> Any | None:
        """Get subscription by processor id."""
        ...

    @abstractmethod
    async def find_renewable_subscription(self, customer_id: str, plan_id: str) -> Any | None:
        """Get the latest-ending active or scheduled-renewal subscription for a (customer, plan) pair."""
        ...

    @abstractmethod
    async def find_payment(self, processor_payment_id: str) -> Any | None:
        """Get payment by processor id."""
        ...

    @abstractmethod
    async def insert_or_reread(self, record: T) -> tuple[T, bool]:
        """Insert a record; if its foreign id already exists, return the stored one.

        A collision rolls back only the failed INSERT. Returns the persisted
        record and whether this call created it.
        """
        ...

    @abstractmethod
    async def save(self) -> None:
        """Commit pending changes."""
        ...
