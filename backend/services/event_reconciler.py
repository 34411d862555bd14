"""
Event reconciler: applies processor lifecycle events to local state.

Events arrive from webhooks (possibly late, duplicated or out of order) and
from explicit status checks against the processor. Every update is keyed by
the processor's entity id and sets fields rather than accumulating them, so
replaying an event is harmless. Ordering defaults to last-writer-wins; with
`enforce_event_order` an event older than the last one applied is skipped.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.razorpay_adapter import (
    WebhookEvent,
    parse_payment,
    parse_subscription,
)
from core.domain.subscription import (
    ACTIVATED_STATUSES,
    EVENT_STATUS,
    AuditActor,
    AuditKind,
    PaymentStatus,
    SubscriptionStatus,
    compute_end_date,
    default_total_count,
    ensure_utc,
    is_terminal,
    parse_status,
)
from core.errors import NotFoundError, ProcessorNotFoundError
from core.interfaces.services import PaymentProcessor, ProcessorSubscription
from infrastructure.database.models.base import utcnow
from infrastructure.database.models.billing import Subscription
from infrastructure.database.repositories import SqlBillingRepository
from services.payments import PaymentService
from services.subscription_lifecycle import subscription_state
from services.upsert_resolver import UpsertResolver

logger = logging.getLogger(__name__)

# Events that carry the captured payment next to their primary entity
_EMBEDDED_PAYMENT_EVENTS = ("subscription.charged", "order.paid")


class EventReconciler:
    """
    Applies subscription, payment, order and invoice events to the store.
    """

    def __init__(
        self,
        db: AsyncSession,
        processor: PaymentProcessor,
        resolver: Optional[UpsertResolver] = None,
        payments: Optional[PaymentService] = None,
        enforce_event_order: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            db: Async database session
            processor: Payment processor client, used by status checks and self-healing
            resolver: Upsert resolver (built on `db` when omitted)
            payments: Payment service (built on `db` when omitted)
            enforce_event_order: Skip events older than the last applied one
            clock: Returns the current aware UTC time
        """
        self.db = db
        self.processor = processor
        self.repository = SqlBillingRepository(db)
        self.resolver = resolver or UpsertResolver(db, processor, self.repository)
        self.payments = payments or PaymentService(db, processor, self.repository)
        self.enforce_event_order = enforce_event_order
        self.clock = clock

    async def apply_event(self, event: WebhookEvent) -> None:
        """Apply a parsed webhook, including any payment embedded alongside its entity."""
        await self.apply(event.event, event.entity_id, event.entity, event.created_at)

        if event.event in _EMBEDDED_PAYMENT_EVENTS and event.entity_kind != "payment":
            payment_entity = (event.payload.get("payment") or {}).get("entity")
            if payment_entity:
                await self.payments.record_payment(parse_payment(payment_entity))

    async def apply(
        self,
        event_type: str,
        entity_id: Optional[str],
        payload: dict[str, Any],
        event_created_at: Optional[datetime] = None,
    ) -> None:
        """
        Apply one event to the store.

        Args:
            event_type: Processor event name, e.g. "subscription.activated"
            entity_id: Processor id of the event's entity
            payload: The entity's fields as sent by the processor
            event_created_at: When the processor emitted the event

        Raises:
            NotFoundError: If a self-healing create references unknown ids
        """
        payload = dict(payload or {})
        if entity_id and not payload.get("id"):
            payload["id"] = entity_id

        if not payload.get("id"):
            logger.warning(f"Event {event_type} carries no entity id, ignoring")
            return

        if event_type.startswith("payment."):
            await self.payments.record_payment(parse_payment(payload))
        elif event_type.startswith("subscription."):
            await self._apply_subscription_event(event_type, payload, ensure_utc(event_created_at))
        elif event_type == "order.paid":
            await self._apply_order_paid(payload["id"])
        elif event_type.startswith("invoice."):
            await self._apply_invoice(event_type, payload, ensure_utc(event_created_at))
        else:
            logger.warning(f"Unhandled webhook event: {event_type}", extra={"event": event_type})

    async def _apply_subscription_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        event_created_at: Optional[datetime],
    ) -> None:
        remote = parse_subscription(payload)
        target = EVENT_STATUS.get(event_type) or parse_status(payload.get("status"))
        if target is None:
            logger.warning(
                f"Unhandled subscription event {event_type} with status {payload.get('status')!r}",
                extra={"event": event_type, "subscription_id": remote.id},
            )
            return

        kind = AuditKind.CHARGED if event_type == "subscription.charged" else AuditKind.STATUS_CHANGED
        await self.reconcile_subscription(
            remote,
            target,
            actor=AuditActor.WEBHOOK,
            kind=kind,
            source_event=event_type,
            event_created_at=event_created_at,
        )

    async def reconcile_subscription(
        self,
        remote: ProcessorSubscription,
        target: SubscriptionStatus,
        actor: AuditActor,
        kind: AuditKind = AuditKind.STATUS_CHANGED,
        source_event: Optional[str] = None,
        event_created_at: Optional[datetime] = None,
    ) -> tuple[Subscription, bool]:
        """
        Set a subscription to the stated status and mirror the processor schedule.

        Creates the local record when it is missing.

        Returns:
            (subscription, True if anything changed)
        """
        subscription = await self.repository.find_subscription(remote.id)

        if subscription is None:
            subscription, created = await self._self_heal(
                remote, target, actor, source_event, event_created_at
            )
            if created:
                return subscription, True

        last_event_at = ensure_utc(subscription.last_event_at)
        if (
            self.enforce_event_order
            and event_created_at is not None
            and last_event_at is not None
            and event_created_at < last_event_at
        ):
            logger.info(
                f"Skipping stale {source_event} for {remote.id}: emitted {event_created_at.isoformat()}, "
                f"last applied {last_event_at.isoformat()}",
                extra={"event": source_event, "subscription_id": remote.id},
            )
            return subscription, False

        before = subscription_state(subscription)

        if is_terminal(subscription.status) and subscription.status != target.value:
            logger.warning(
                f"Subscription {remote.id} leaves terminal status {subscription.status} for {target.value}",
                extra={"event": source_event, "subscription_id": remote.id},
            )

        subscription.status = target.value
        if target in ACTIVATED_STATUSES:
            subscription.pending_activation = False

        self._mirror_schedule(subscription, remote)
        if event_created_at is not None and (last_event_at is None or event_created_at > last_event_at):
            subscription.last_event_at = event_created_at

        after = subscription_state(subscription)
        changed = before != after
        if changed:
            self.repository.record_audit(
                subscription, kind, actor, before=before, after=after, source_event=source_event
            )
        await self.repository.save()

        logger.info(
            f"Applied {source_event or actor.value} to {remote.id}: {before['status']} -> {target.value}"
            + ("" if changed else " (no change)"),
            extra={"event": source_event, "subscription_id": remote.id},
        )
        return subscription, changed

    @staticmethod
    def _mirror_schedule(subscription: Subscription, remote: ProcessorSubscription) -> None:
        """Copy the processor's schedule fields; paid_count never decreases."""
        if remote.current_start is not None:
            subscription.current_period_start = remote.current_start
        if remote.current_end is not None:
            subscription.current_period_end = remote.current_end
        if remote.charge_at is not None:
            subscription.charge_at = remote.charge_at
        if remote.start_at is not None:
            subscription.start_at = remote.start_at
        if remote.end_at is not None:
            subscription.processor_end_at = remote.end_at
        if remote.total_count:
            subscription.total_count = remote.total_count
        if remote.short_url:
            subscription.short_url = remote.short_url
        if remote.notes:
            subscription.processor_notes = dict(remote.notes)
        subscription.paid_count = max(subscription.paid_count or 0, remote.paid_count or 0)

    async def _self_heal(
        self,
        remote: ProcessorSubscription,
        target: SubscriptionStatus,
        actor: AuditActor,
        source_event: Optional[str],
        event_created_at: Optional[datetime],
    ) -> tuple[Subscription, bool]:
        """Materialise a subscription the processor knows about but the store does not."""
        if not remote.plan_id or not remote.customer_id:
            # Webhook entities always carry both; fall back to the processor's record
            remote = await self._fetch_remote(remote.id)

        customer, plan = await self.resolver.ensure_subscription_parties(remote)

        total_count = remote.total_count or default_total_count(plan.billing_period)
        start = remote.start_at or remote.current_start or event_created_at or ensure_utc(self.clock())

        subscription = Subscription(
            id=str(uuid4()),
            razorpay_subscription_id=remote.id,
            customer_id=customer.id,
            plan_id=plan.id,
            status=target.value,
            subscription_start_date=start,
            subscription_end_date=compute_end_date(
                start, plan.interval, plan.interval_count, total_count
            ),
            total_count=total_count,
            paid_count=0,
            billing_period=plan.billing_period,
            pending_activation=target not in ACTIVATED_STATUSES,
            is_renewal=False,
            is_scheduled=False,
            last_event_at=event_created_at,
            addons=[],
        )
        self._mirror_schedule(subscription, remote)

        subscription, created = await self.repository.insert_or_reread(subscription)
        if created:
            self.repository.record_audit(
                subscription,
                AuditKind.SELF_HEALED,
                actor,
                after=subscription_state(subscription),
                source_event=source_event,
            )
            await self.repository.save()
            logger.warning(
                f"Self-healed missing subscription {remote.id} as {target.value}",
                extra={"event": source_event, "subscription_id": remote.id},
            )
        return subscription, created

    async def _fetch_remote(self, processor_subscription_id: str) -> ProcessorSubscription:
        try:
            return await self.processor.fetch_subscription(processor_subscription_id)
        except ProcessorNotFoundError as e:
            raise NotFoundError(f"Subscription {processor_subscription_id} not found") from e

    async def check_subscription_status(
        self, processor_subscription_id: str
    ) -> tuple[Subscription, bool]:
        """
        Re-fetch a subscription from the processor and reconcile any drift.

        Compensates for webhooks that never arrived. The check itself is always
        stamped on the record and in the audit trail.

        Returns:
            (subscription, True if the processor state differed from the store)

        Raises:
            NotFoundError: If the processor has no such subscription
        """
        remote = await self._fetch_remote(processor_subscription_id)
        status = parse_status(remote.status)
        if status is None:
            logger.warning(f"Processor reported unknown status {remote.status!r} for {remote.id}")
            status = SubscriptionStatus.PENDING

        subscription, changed = await self.reconcile_subscription(
            remote, status, actor=AuditActor.POLL, source_event="manual_check"
        )

        checked_at = ensure_utc(self.clock())
        subscription.manually_checked_at = checked_at
        self.repository.record_audit(
            subscription,
            AuditKind.MANUAL_CHECK,
            AuditActor.POLL,
            after={"status": subscription.status, "changed": changed, "checked_at": checked_at.isoformat()},
            source_event="manual_check",
            occurred_at=checked_at,
        )
        await self.repository.save()

        logger.info(
            f"Manual status check for {processor_subscription_id}: {subscription.status} (changed={changed})",
            extra={"subscription_id": processor_subscription_id},
        )
        return subscription, changed

    async def _apply_order_paid(self, processor_order_id: str) -> None:
        """Mark every known payment of the order as captured."""
        payments = await self.repository.find_payments_by_order(processor_order_id)
        if not payments:
            logger.info(f"order.paid for {processor_order_id} has no local payments yet")
            return
        for payment in payments:
            if payment.status != PaymentStatus.REFUNDED.value:
                payment.status = PaymentStatus.CAPTURED.value
        await self.repository.save()

    async def _apply_invoice(
        self,
        event_type: str,
        payload: dict[str, Any],
        event_created_at: Optional[datetime],
    ) -> None:
        """Record invoice events in the owning subscription's audit trail."""
        processor_subscription_id = payload.get("subscription_id")
        subscription = (
            await self.repository.find_subscription(processor_subscription_id)
            if processor_subscription_id
            else None
        )
        if subscription is None:
            logger.info(
                f"{event_type} for {payload['id']} references no known subscription, ignoring",
                extra={"event": event_type},
            )
            return

        self.repository.record_audit(
            subscription,
            AuditKind.INVOICE,
            AuditActor.WEBHOOK,
            after={
                "invoice_id": payload["id"],
                "status": payload.get("status"),
                "amount": payload.get("amount"),
                "payment_id": payload.get("payment_id"),
            },
            source_event=event_type,
            occurred_at=event_created_at,
        )
        await self.repository.save()
        logger.info(
            f"Recorded {event_type} {payload['id']} on {processor_subscription_id}",
            extra={"event": event_type, "subscription_id": processor_subscription_id},
        )
