"""
API dependencies: processor client, webhook gate and service builders.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.interfaces.services import PaymentProcessor
from core.security.webhook_signature import WebhookSignatureVerifier
from infrastructure.config import get_settings
from infrastructure.database import get_db, get_session_factory
from services import get_razorpay_adapter
from services.event_reconciler import EventReconciler
from services.payments import PaymentService
from services.subscription_lifecycle import SubscriptionLifecycleController
from services.upsert_resolver import UpsertResolver
from services.webhook_processor import WebhookProcessor


def get_processor() -> PaymentProcessor:
    """Payment processor client; overridden with a fake in tests."""
    return get_razorpay_adapter()


def get_webhook_verifier() -> WebhookSignatureVerifier:
    settings = get_settings()
    return WebhookSignatureVerifier(
        secret=settings.razorpay_webhook_secret,
        bypass=settings.webhook_signature_bypass,
    )


def get_upsert_resolver(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
) -> UpsertResolver:
    return UpsertResolver(db, processor)


def get_lifecycle_controller(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
) -> SubscriptionLifecycleController:
    return SubscriptionLifecycleController(db, processor)


def get_event_reconciler(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
) -> EventReconciler:
    return EventReconciler(
        db,
        processor,
        enforce_event_order=get_settings().enforce_event_order,
    )


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
) -> PaymentService:
    return PaymentService(db, processor)


def get_webhook_processor(
    session_factory=Depends(get_session_factory),
    verifier: WebhookSignatureVerifier = Depends(get_webhook_verifier),
    processor: PaymentProcessor = Depends(get_processor),
) -> WebhookProcessor:
    """Webhook work outlives the request, so it opens its own session."""
    return WebhookProcessor(session_factory, verifier, processor)
