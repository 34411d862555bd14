"""
Upsert resolver: maps processor-issued ids onto local records.

Every entry point that receives a processor id goes through here, so a
customer or plan the processor already knows about is mirrored locally on
first reference. Concurrent first references are settled by the store's
unique constraint on the foreign id; the loser re-reads the winner's row.
"""

import logging
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import derive_billing_period, normalize_interval
from core.errors import NotFoundError, ProcessorNotFoundError, ValidationError
from core.interfaces.services import PaymentProcessor, ProcessorSubscription
from infrastructure.database.models.billing import Customer, Plan
from infrastructure.database.repositories import SqlBillingRepository

logger = logging.getLogger(__name__)


def _normalize_email(value: Optional[str]) -> Optional[str]:
    """Lowercased email, or None when blank so it never collides on the unique index."""
    value = (value or "").strip().lower()
    return value or None


class UpsertResolver:
    """
    Find-or-create for customers and plans keyed by processor id.
    """

    def __init__(
        self,
        db: AsyncSession,
        processor: PaymentProcessor,
        repository: Optional[SqlBillingRepository] = None,
    ):
        """
        Args:
            db: Async database session
            processor: Payment processor client
            repository: Billing store (built on `db` when omitted)
        """
        self.db = db
        self.processor = processor
        self.repository = repository or SqlBillingRepository(db)

    async def resolve_customer(
        self,
        processor_customer_id: str,
        user_context: Optional[dict[str, Any]] = None,
    ) -> Customer:
        """
        Return the local customer for a processor id, mirroring it on a miss.

        Args:
            processor_customer_id: Razorpay customer id
            user_context: Optional {"user_id", "name", "email", "contact"} of the
                local user, used for the owning-user link and to fill blanks the
                processor record leaves empty

        Raises:
            ValidationError: If the id is empty
            NotFoundError: If neither the store nor the processor knows the id
        """
        if not processor_customer_id:
            raise ValidationError("customerForeignId is required")

        customer = await self.repository.find_customer(processor_customer_id)
        if customer is not None:
            return customer

        try:
            remote = await self.processor.fetch_customer(processor_customer_id)
        except ProcessorNotFoundError as e:
            raise NotFoundError(f"Customer {processor_customer_id} not found") from e

        context = user_context or {}
        customer = Customer(
            id=str(uuid4()),
            razorpay_customer_id=remote.id or processor_customer_id,
            name=remote.name or context.get("name") or "",
            email=_normalize_email(remote.email or context.get("email")),
            contact=remote.contact or context.get("contact") or "",
            user_id=context.get("user_id"),
            notes=remote.notes,
        )
        customer, created = await self.repository.insert_or_reread(customer)
        if created:
            logger.info(f"Mirrored customer {processor_customer_id} from processor")
        return customer

    async def resolve_plan(self, processor_plan_id: str) -> Plan:
        """
        Return the local plan for a processor id, mirroring it on a miss.

        Raises:
            ValidationError: If the id is empty
            NotFoundError: If neither the store nor the processor knows the id
        """
        if not processor_plan_id:
            raise ValidationError("planForeignId is required")

        plan = await self.repository.find_plan(processor_plan_id)
        if plan is not None:
            return plan

        try:
            remote = await self.processor.fetch_plan(processor_plan_id)
        except ProcessorNotFoundError as e:
            raise NotFoundError(f"Plan {processor_plan_id} not found") from e

        plan = Plan(
            id=str(uuid4()),
            razorpay_plan_id=remote.id or processor_plan_id,
            name=remote.name,
            description=remote.description,
            amount=remote.amount,
            currency=remote.currency,
            interval=normalize_interval(remote.period).value,
            interval_count=remote.interval,
            billing_period=derive_billing_period(remote.period, remote.interval).value,
            features=[],
            is_active=True,
        )
        plan, created = await self.repository.insert_or_reread(plan)
        if created:
            logger.info(
                f"Mirrored plan {processor_plan_id} ({plan.billing_period}, {plan.amount} {plan.currency})"
            )
        return plan

    async def create_customer(
        self,
        name: str,
        email: str,
        contact: str,
        user_id: Optional[str] = None,
        notes: Optional[dict[str, Any]] = None,
    ) -> tuple[Customer, bool]:
        """
        Register a customer at the processor and mirror it locally.

        An existing local customer for the same email or owning user is
        returned as-is.

        Returns:
            (customer, True if a new local record was created)

        Raises:
            ValidationError: If name, email or contact is missing
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()
        contact = (contact or "").strip()
        if not name or not email or not contact:
            raise ValidationError("name, email and contact are required")

        existing = await self.repository.find_customer_by_email(email)
        if existing is None and user_id:
            existing = await self.repository.find_customer_by_user(user_id)
        if existing is not None:
            logger.info(f"Customer for {user_id or 'email'} already exists: {existing.razorpay_customer_id}")
            return existing, False

        remote = await self.processor.create_customer(name, email, contact, notes)

        customer = Customer(
            id=str(uuid4()),
            razorpay_customer_id=remote.id,
            name=remote.name or name,
            email=_normalize_email(remote.email or email),
            contact=remote.contact or contact,
            user_id=user_id,
            notes=notes or remote.notes,
        )
        return await self.repository.insert_or_reread(customer)

    async def ensure_subscription_parties(
        self, remote: ProcessorSubscription
    ) -> tuple[Customer, Plan]:
        """Resolve the customer and plan a processor subscription refers to."""
        if not remote.customer_id:
            raise ValidationError(f"Subscription {remote.id} carries no customer id")
        plan = await self.resolve_plan(remote.plan_id)
        customer = await self.resolve_customer(remote.customer_id)
        return customer, plan
