"""
Subscription lifecycle controller.

Decides whether a subscription request is a first subscription or a renewal
of the current active cycle, computes the cycle boundaries locally, asks the
processor to create the subscription and only then writes the local record.
A processor rejection leaves the store untouched.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import (
    AuditActor,
    AuditKind,
    SubscriptionStatus,
    compute_end_date,
    compute_expire_by,
    default_total_count,
    ensure_utc,
    is_terminal,
    parse_status,
    renewal_start_date,
)
from core.errors import (
    NotFoundError,
    PlanNotFoundError,
    ProcessorError,
    ProcessorNotFoundError,
    SubscriptionCreationError,
    ValidationError,
)
from core.interfaces.services import PaymentProcessor, ProcessorAddon
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database.models.base import utcnow
from infrastructure.database.models.billing import Customer, Plan, Subscription
from infrastructure.database.repositories import SqlBillingRepository
from services.upsert_resolver import UpsertResolver

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def subscription_state(subscription: Subscription) -> dict[str, Any]:
    """JSON-safe view of the mutable part of a subscription, for audit entries."""
    return {
        "status": subscription.status,
        "paid_count": subscription.paid_count,
        "total_count": subscription.total_count,
        "current_period_start": _iso(subscription.current_period_start),
        "current_period_end": _iso(subscription.current_period_end),
        "charge_at": _iso(subscription.charge_at),
        "pending_activation": subscription.pending_activation,
    }


@dataclass
class SubscriptionSnapshot:
    """Processor-confirmed subscription fields joined with local projections."""

    id: str
    razorpay_subscription_id: str
    status: str
    billing_period: str
    total_count: int
    paid_count: int
    subscription_start_date: Optional[str]
    subscription_end_date: Optional[str]
    start_at: Optional[str]
    charge_at: Optional[str]
    current_period_start: Optional[str]
    current_period_end: Optional[str]
    short_url: Optional[str]
    pending_activation: bool
    is_renewal: bool
    is_scheduled: bool
    manually_checked_at: Optional[str]
    customer: dict[str, Any]
    plan: dict[str, Any]
    addons: list[dict[str, Any]] = field(default_factory=list)
    discount: Optional[dict[str, Any]] = None
    audit: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        subscription: Subscription,
        customer: Optional[Customer],
        plan: Optional[Plan],
        audit: Optional[list[dict[str, Any]]] = None,
    ) -> "SubscriptionSnapshot":
        return cls(
            id=subscription.id,
            razorpay_subscription_id=subscription.razorpay_subscription_id,
            status=subscription.status,
            billing_period=subscription.billing_period,
            total_count=subscription.total_count,
            paid_count=subscription.paid_count,
            subscription_start_date=_iso(subscription.subscription_start_date),
            subscription_end_date=_iso(subscription.subscription_end_date),
            start_at=_iso(subscription.start_at),
            charge_at=_iso(subscription.charge_at),
            current_period_start=_iso(subscription.current_period_start),
            current_period_end=_iso(subscription.current_period_end),
            short_url=subscription.short_url,
            pending_activation=subscription.pending_activation,
            is_renewal=subscription.is_renewal,
            is_scheduled=subscription.is_scheduled,
            manually_checked_at=_iso(subscription.manually_checked_at),
            customer=project_customer(customer) if customer else {},
            plan=project_plan(plan) if plan else {},
            addons=list(subscription.addons or []),
            discount=subscription.discount,
            audit=audit or [],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def project_customer(customer: Customer) -> dict[str, Any]:
    return {
        "id": customer.id,
        "razorpay_customer_id": customer.razorpay_customer_id,
        "name": customer.name,
        "email": customer.email,
        "contact": customer.contact,
    }


def project_plan(plan: Plan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "razorpay_plan_id": plan.razorpay_plan_id,
        "name": plan.name,
        "description": plan.description,
        "amount": plan.amount,
        "amount_major": str(plan.amount_major),
        "currency": plan.currency,
        "interval": plan.interval,
        "interval_count": plan.interval_count,
        "billing_period": plan.billing_period,
        "features": list(plan.features or []),
        "is_active": plan.is_active,
    }


class SubscriptionLifecycleController:
    """
    Creates and renews subscriptions for a (customer, plan) pair.

    At most one subscription per pair is active at a time: a request for a
    pair that already has a running active cycle schedules a renewal that
    starts the day after that cycle ends, instead of a parallel subscription.
    When a renewal is already scheduled the next one starts after it.
    """

    def __init__(
        self,
        db: AsyncSession,
        processor: PaymentProcessor,
        resolver: Optional[UpsertResolver] = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            db: Async database session
            processor: Payment processor client
            resolver: Upsert resolver (built on `db` and `processor` when omitted)
            clock: Returns the current aware UTC time
            settings: Application settings (defaults to the cached instance)
        """
        self.db = db
        self.processor = processor
        self.repository = SqlBillingRepository(db)
        self.resolver = resolver or UpsertResolver(db, processor, self.repository)
        self.clock = clock
        self.settings = settings or get_settings()

    async def create_or_renew_subscription(
        self,
        customer_foreign_id: str,
        plan_foreign_id: str,
        total_count: Optional[int] = None,
        addons: Optional[list[dict[str, Any]]] = None,
        notes: Optional[dict[str, Any]] = None,
    ) -> SubscriptionSnapshot:
        """
        Create a first subscription or schedule the renewal of the active one.

        Args:
            customer_foreign_id: Razorpay customer id
            plan_foreign_id: Razorpay plan id
            total_count: Billing cycles; defaults from the plan's billing period
            addons: Upfront charges, each {"name", "amount", "currency"?}
            notes: Notes forwarded to the processor

        Returns:
            SubscriptionSnapshot of the stored subscription

        Raises:
            ValidationError: If an id is missing or total_count is not positive
            NotFoundError: If the customer or plan is unknown everywhere
            PlanNotFoundError: If the processor rejects the plan
            SubscriptionCreationError: If the processor rejects the subscription
        """
        if not customer_foreign_id or not plan_foreign_id:
            raise ValidationError("customerForeignId and planForeignId are required")
        if total_count is not None and total_count < 1:
            raise ValidationError("totalCount must be a positive integer")

        customer = await self.resolver.resolve_customer(customer_foreign_id)
        plan = await self.resolver.resolve_plan(plan_foreign_id)

        cycles = total_count or default_total_count(plan.billing_period)
        now = ensure_utc(self.clock())

        # Chains after an already scheduled renewal too, so repeated requests queue up
        current = await self.repository.find_renewable_subscription(customer.id, plan.id)
        is_renewal = current is not None and ensure_utc(current.subscription_end_date) >= now

        if is_renewal:
            start_date = renewal_start_date(current.subscription_end_date)
            start_at: Optional[datetime] = start_date
            logger.info(
                f"Renewal for customer {customer_foreign_id} on plan {plan_foreign_id}: "
                f"{current.razorpay_subscription_id} ends {current.subscription_end_date}, "
                f"next cycle starts {start_date.isoformat()}"
            )
        else:
            start_date = now
            start_at = None

        expire_by = compute_expire_by(now, start_at, self.settings.subscription_expire_by_days)
        end_date = compute_end_date(start_date, plan.interval, plan.interval_count, cycles)

        try:
            remote = await self.processor.create_subscription(
                plan_id=plan.razorpay_plan_id,
                customer_id=customer.razorpay_customer_id,
                total_count=cycles,
                expire_by=expire_by,
                start_at=start_at,
                addons=addons,
                notes={**(notes or {}), "is_renewal": "true" if is_renewal else "false"},
            )
        except ProcessorError as e:
            logger.warning(
                f"Processor rejected subscription for plan {plan_foreign_id}: {e.code} {e.description}"
            )
            if isinstance(e, ProcessorNotFoundError) or "plan" in e.description.lower():
                raise PlanNotFoundError(e.description, code=e.code, status_code=e.status_code) from e
            raise SubscriptionCreationError(e.description, code=e.code, status_code=e.status_code) from e

        subscription = Subscription(
            id=str(uuid4()),
            razorpay_subscription_id=remote.id,
            customer_id=customer.id,
            plan_id=plan.id,
            status=(parse_status(remote.status) or SubscriptionStatus.CREATED).value,
            subscription_start_date=start_date,
            subscription_end_date=end_date,
            start_at=remote.start_at or start_at,
            charge_at=remote.charge_at,
            current_period_start=remote.current_start,
            current_period_end=remote.current_end,
            processor_end_at=remote.end_at,
            total_count=remote.total_count or cycles,
            paid_count=remote.paid_count,
            billing_period=plan.billing_period,
            pending_activation=True,
            is_renewal=is_renewal,
            is_scheduled=start_at is not None,
            short_url=remote.short_url,
            addons=[
                {
                    "razorpay_addon_id": None,
                    "name": addon["name"],
                    "amount": int(addon["amount"]),
                    "quantity": 1,
                }
                for addon in addons or []
            ],
            processor_notes=remote.notes,
        )
        subscription, created = await self.repository.insert_or_reread(subscription)

        if not created:
            # A webhook mirrored this subscription first; keep its status, add our schedule
            logger.info(f"Subscription {remote.id} was already mirrored, merging local schedule")
            subscription.subscription_start_date = start_date
            subscription.subscription_end_date = end_date
            subscription.is_renewal = is_renewal
            subscription.is_scheduled = start_at is not None

        self.repository.record_audit(
            subscription,
            AuditKind.CREATED,
            AuditActor.CONTROLLER,
            after=subscription_state(subscription),
        )
        await self.repository.save()

        logger.info(
            f"Created subscription {remote.id} ({subscription.status}, renewal={is_renewal}, "
            f"cycles={subscription.total_count})"
        )
        return await self._snapshot(subscription)

    async def _snapshot(
        self, subscription: Subscription, with_audit: bool = False
    ) -> SubscriptionSnapshot:
        customer = await self.repository.find_customer_by_id(subscription.customer_id)
        plan = await self.repository.find_plan_by_id(subscription.plan_id)
        audit = None
        if with_audit:
            audit = [
                {
                    "kind": entry.kind,
                    "actor": entry.actor,
                    "source_event": entry.source_event,
                    "before": entry.before,
                    "after": entry.after,
                    "occurred_at": _iso(entry.occurred_at),
                }
                for entry in await self.repository.list_audit_events(subscription.id)
            ]
        return SubscriptionSnapshot.build(subscription, customer, plan, audit)

    async def get_snapshot(self, processor_subscription_id: str) -> SubscriptionSnapshot:
        """
        Local view of a subscription with its audit trail.

        Raises:
            NotFoundError: If the subscription is not stored locally
        """
        subscription = await self.repository.find_subscription(processor_subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {processor_subscription_id} not found")
        return await self._snapshot(subscription, with_audit=True)

    async def add_addon(
        self,
        processor_subscription_id: str,
        name: str,
        amount: int,
        quantity: int = 1,
        currency: Optional[str] = None,
    ) -> ProcessorAddon:
        """
        Attach a one-time charge to the subscription's next invoice.

        Raises:
            NotFoundError: If the subscription is not stored locally
            ValidationError: If the subscription has ended or the input is invalid
        """
        if not name or amount <= 0 or quantity <= 0:
            raise ValidationError("Addon name, a positive amount and quantity are required")

        subscription = await self.repository.find_subscription(processor_subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {processor_subscription_id} not found")
        if is_terminal(subscription.status):
            raise ValidationError(
                f"Subscription {processor_subscription_id} is {subscription.status}; addons are not allowed"
            )

        addon = await self.processor.create_addon(
            processor_subscription_id,
            name=name,
            amount=amount,
            currency=currency or self.settings.default_currency,
            quantity=quantity,
        )

        entry = {
            "razorpay_addon_id": addon.id,
            "name": addon.name or name,
            "amount": addon.amount or amount,
            "quantity": addon.quantity,
        }
        # Reassign so the JSON column is flagged dirty
        subscription.addons = [*(subscription.addons or []), entry]
        self.repository.record_audit(
            subscription,
            AuditKind.ADDON_ADDED,
            AuditActor.CONTROLLER,
            after=entry,
        )
        await self.repository.save()

        logger.info(f"Added addon {addon.id} to subscription {processor_subscription_id}")
        return addon
