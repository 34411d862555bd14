"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .billing import Customer, Payment, Plan, Subscription, SubscriptionAuditEvent

__all__ = [
    "Base",
    "TimestampMixin",
    "Customer",
    "Plan",
    "Subscription",
    "SubscriptionAuditEvent",
    "Payment",
]
