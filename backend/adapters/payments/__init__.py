"""Payment processor adapters."""

from .razorpay_adapter import (
    RazorpayAdapter,
    RazorpayAPIError,
    RazorpayAuthError,
    RazorpayError,
    RazorpayNotFoundError,
    RazorpayWebhookError,
    WebhookEvent,
    create_razorpay_adapter,
    parse_webhook_event,
)

__all__ = [
    "RazorpayAdapter",
    "WebhookEvent",
    "RazorpayError",
    "RazorpayAPIError",
    "RazorpayNotFoundError",
    "RazorpayAuthError",
    "RazorpayWebhookError",
    "create_razorpay_adapter",
    "parse_webhook_event",
]
