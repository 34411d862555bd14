"""
Service layer for business logic.
"""

from functools import lru_cache

from adapters.payments.razorpay_adapter import RazorpayAdapter, create_razorpay_adapter
from services.event_reconciler import EventReconciler
from services.payments import PaymentService
from services.subscription_lifecycle import SubscriptionLifecycleController, SubscriptionSnapshot
from services.upsert_resolver import UpsertResolver
from services.webhook_processor import WebhookProcessor


@lru_cache
def get_razorpay_adapter() -> RazorpayAdapter:
    """
    Get singleton Razorpay adapter instance.

    Returns:
        RazorpayAdapter configured from settings
    """
    return create_razorpay_adapter()


__all__ = [
    "EventReconciler",
    "PaymentService",
    "SubscriptionLifecycleController",
    "SubscriptionSnapshot",
    "UpsertResolver",
    "WebhookProcessor",
    "get_razorpay_adapter",
]
