"""
API request and response schemas.
"""

from .billing import (
    AddonCreateRequest,
    AddonResponse,
    CustomerCreateRequest,
    CustomerResponse,
    PlanResponse,
    SubscriptionCheckResponse,
    SubscriptionCreateRequest,
    SubscriptionResponse,
    WebhookAck,
)
from .payments import (
    OrderCreateRequest,
    OrderResponse,
    PaymentCaptureRequest,
    PaymentResponse,
)

__all__ = [
    "AddonCreateRequest",
    "AddonResponse",
    "CustomerCreateRequest",
    "CustomerResponse",
    "PlanResponse",
    "SubscriptionCheckResponse",
    "SubscriptionCreateRequest",
    "SubscriptionResponse",
    "WebhookAck",
    "OrderCreateRequest",
    "OrderResponse",
    "PaymentCaptureRequest",
    "PaymentResponse",
]
