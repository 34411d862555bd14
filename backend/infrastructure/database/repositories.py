"""
SQLAlchemy implementation of the billing repository.
"""

import logging
from datetime import datetime
from typing import Any, Optional, TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import (
    TERMINAL_STATUSES,
    AuditActor,
    AuditKind,
    SubscriptionStatus,
)
from core.errors import PersistenceError
from core.interfaces.repositories import BillingRepository

from .models.base import utcnow
from .models.billing import (
    Customer,
    Payment,
    Plan,
    Subscription,
    SubscriptionAuditEvent,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Model -> column holding the processor-issued id
FOREIGN_ID_COLUMNS = {
    Customer: Customer.razorpay_customer_id,
    Plan: Plan.razorpay_plan_id,
    Subscription: Subscription.razorpay_subscription_id,
    Payment: Payment.razorpay_payment_id,
}


class SqlBillingRepository(BillingRepository):
    """Billing store backed by an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find_by(self, model: type, column: Any, value: Any) -> Optional[Any]:
        result = await self.db.execute(select(model).where(column == value))
        return result.scalar_one_or_none()

    async def find_customer(self, processor_customer_id: str) -> Optional[Customer]:
        return await self._find_by(Customer, Customer.razorpay_customer_id, processor_customer_id)

    async def find_customer_by_email(self, email: str) -> Optional[Customer]:
        return await self._find_by(Customer, Customer.email, email.strip().lower())

    async def find_customer_by_user(self, user_id: str) -> Optional[Customer]:
        result = await self.db.execute(
            select(Customer).where(Customer.user_id == user_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_customer_by_id(self, customer_id: str) -> Optional[Customer]:
        return await self.db.get(Customer, customer_id)

    async def find_plan(self, processor_plan_id: str) -> Optional[Plan]:
        return await self._find_by(Plan, Plan.razorpay_plan_id, processor_plan_id)

    async def find_plan_by_id(self, plan_id: str) -> Optional[Plan]:
        return await self.db.get(Plan, plan_id)

    async def find_subscription(self, processor_subscription_id: str) -> Optional[Subscription]:
        return await self._find_by(
            Subscription, Subscription.razorpay_subscription_id, processor_subscription_id
        )

    async def find_renewable_subscription(
        self, customer_id: str, plan_id: str
    ) -> Optional[Subscription]:
        """
        Latest-ending subscription a new request for the pair must chain from.

        That is an active subscription, or a renewal already scheduled after one
        that has not reached a terminal status.
        """
        terminal = [status.value for status in TERMINAL_STATUSES]
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.customer_id == customer_id,
                Subscription.plan_id == plan_id,
                or_(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    and_(
                        Subscription.is_renewal.is_(True),
                        Subscription.status.not_in(terminal),
                    ),
                ),
            )
            .order_by(Subscription.subscription_end_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_payment(self, processor_payment_id: str) -> Optional[Payment]:
        return await self._find_by(Payment, Payment.razorpay_payment_id, processor_payment_id)

    async def find_payments_by_order(self, processor_order_id: str) -> list[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.razorpay_order_id == processor_order_id)
        )
        return list(result.scalars().all())

    async def insert_or_reread(self, record: T) -> tuple[T, bool]:
        """
        Insert a record and commit; on a foreign-id collision re-read the winner.

        The INSERT runs inside a savepoint so a collision only rolls back that
        statement; records the caller loaded earlier stay usable.

        Returns:
            (persisted record, True if this call created it)

        Raises:
            PersistenceError: If the insert failed and no record with the same
                foreign id is stored (another unique column collided)
        """
        model = type(record)
        column = FOREIGN_ID_COLUMNS[model]
        foreign_id = getattr(record, column.key)

        savepoint = await self.db.begin_nested()
        try:
            self.db.add(record)
            await savepoint.commit()
        except IntegrityError as e:
            await savepoint.rollback()
            logger.info(
                "Insert collided for %s %s, re-reading stored record",
                model.__name__,
                foreign_id,
            )
            existing = await self._find_by(model, column, foreign_id)
            if existing is None:
                raise PersistenceError(
                    f"Could not store {model.__name__} {foreign_id}: {e.orig}"
                ) from e
            return existing, False

        await self.db.commit()
        return record, True

    def record_audit(
        self,
        subscription: Subscription,
        kind: AuditKind,
        actor: AuditActor,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        source_event: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> SubscriptionAuditEvent:
        """Append an audit entry; it is persisted on the next commit."""
        entry = SubscriptionAuditEvent(
            subscription_id=subscription.id,
            kind=kind.value,
            actor=actor.value,
            before=before,
            after=after,
            source_event=source_event,
            occurred_at=occurred_at or utcnow(),
        )
        self.db.add(entry)
        return entry

    async def list_audit_events(self, subscription_id: str) -> list[SubscriptionAuditEvent]:
        result = await self.db.execute(
            select(SubscriptionAuditEvent)
            .where(SubscriptionAuditEvent.subscription_id == subscription_id)
            .order_by(SubscriptionAuditEvent.occurred_at.asc())
        )
        return list(result.scalars().all())

    async def save(self) -> None:
        """
        Commit pending changes.

        Raises:
            PersistenceError: If the commit violates a store constraint
        """
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceError(f"Could not save changes: {e.orig}") from e
