"""
Billing database models: customers, plans, subscriptions and payments.

Every table mirrors a processor entity and carries a UNIQUE constraint on the
processor-issued id; concurrent creators rely on it to detect a lost race.
Amounts are integer minor currency units.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.subscription import (
    BillingPeriod,
    PaymentStatus,
    PlanInterval,
    SubscriptionStatus,
)

from .base import Base, TimestampMixin, utcnow


class Customer(Base, TimestampMixin):
    """Processor customer mirrored locally."""

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    razorpay_customer_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # NULL when the processor record has no email; UNIQUE ignores NULLs
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    contact: Mapped[str] = mapped_column(String(32), nullable=False)

    # Owning application user, if any
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # The only field that may change after creation
    notes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, razorpay_customer_id={self.razorpay_customer_id})>"


class Plan(Base, TimestampMixin):
    """Processor plan, created lazily on first reference and never rewritten."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    razorpay_plan_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)
    interval: Mapped[str] = mapped_column(
        String(16), default=PlanInterval.MONTHLY.value, nullable=False
    )
    interval_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    billing_period: Mapped[str] = mapped_column(
        String(16), default=BillingPeriod.MONTHLY.value, nullable=False
    )
    features: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def amount_major(self) -> Decimal:
        """Amount in major currency units (rupees for INR)."""
        return Decimal(self.amount) / 100

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, razorpay_plan_id={self.razorpay_plan_id}, period={self.billing_period})>"


class Subscription(Base, TimestampMixin):
    """One billing cycle chain for a (customer, plan) pair.

    Never deleted; terminal statuses end the lifecycle and a renewal is a new row.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    razorpay_subscription_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    customer_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
    )
    plan_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(32), default=SubscriptionStatus.CREATED.value, nullable=False
    )

    # Locally computed cycle boundaries
    subscription_start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    subscription_end_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # Mirrors of the processor's own schedule
    start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    charge_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processor_end_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    total_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    paid_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False)

    # Lifecycle flags
    pending_activation: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_renewal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    manually_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # created_at of the newest webhook event applied
    last_event_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    short_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    addons: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    """
    Structure:
    [
        {"razorpay_addon_id": "ao_xxx", "name": "Setup fee", "amount": 50000, "quantity": 1}
    ]
    """

    discount: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """
    Structure:
    {"amount": 10, "type": "percentage", "applied_by": "...", "applied_at": "...", "notes": "..."}
    """

    # Notes echoed back by the processor
    processor_notes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_customer_plan_status", "customer_id", "plan_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, razorpay_subscription_id={self.razorpay_subscription_id}, "
            f"status={self.status})>"
        )


class SubscriptionAuditEvent(Base):
    """Append-only trail of every change made to a subscription."""

    __tablename__ = "subscription_audit_events"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    subscription_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(String(32), nullable=False)
    source_event: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    before: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    after: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<SubscriptionAuditEvent(kind={self.kind!r}, actor={self.actor!r})>"


class Payment(Base, TimestampMixin):
    """Processor payment, upserted on capture or first webhook mention."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    razorpay_payment_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    razorpay_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    customer_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), default=PaymentStatus.CREATED.value, nullable=False
    )
    method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Payment(razorpay_payment_id={self.razorpay_payment_id}, status={self.status})>"
