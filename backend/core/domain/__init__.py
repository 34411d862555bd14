"""Domain rules for subscription billing."""

from .subscription import (
    ACTIVATED_STATUSES,
    EVENT_STATUS,
    TERMINAL_STATUSES,
    AuditActor,
    AuditKind,
    BillingPeriod,
    PaymentStatus,
    PlanInterval,
    SubscriptionStatus,
)

__all__ = [
    "SubscriptionStatus",
    "PaymentStatus",
    "PlanInterval",
    "BillingPeriod",
    "AuditActor",
    "AuditKind",
    "EVENT_STATUS",
    "TERMINAL_STATUSES",
    "ACTIVATED_STATUSES",
]
