"""
Background handling of inbound webhooks.

The HTTP handler acknowledges delivery first and hands the raw body here.
Failures are logged and never reach the sender: the acknowledgement has
already gone out, and one bad event must not block the next.
"""

import logging
from typing import Any, Callable, Optional

from adapters.payments.razorpay_adapter import RazorpayWebhookError, parse_webhook_event
from core.errors import BillingError, InvalidSignatureError
from core.interfaces.services import PaymentProcessor
from core.security.webhook_signature import WebhookSignatureVerifier
from infrastructure.config.settings import Settings, get_settings
from services.event_reconciler import EventReconciler

logger = logging.getLogger(__name__)


class WebhookProcessor:
    """Verifies a webhook body and feeds it to the event reconciler."""

    def __init__(
        self,
        session_factory: Callable[[], Any],
        verifier: WebhookSignatureVerifier,
        processor: PaymentProcessor,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            session_factory: Returns an async context manager yielding an AsyncSession
            verifier: Signature gate
            processor: Payment processor client for self-healing lookups
            settings: Application settings (defaults to the cached instance)
        """
        self.session_factory = session_factory
        self.verifier = verifier
        self.processor = processor
        self.settings = settings or get_settings()

    async def process(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """
        Verify and apply one webhook delivery.

        Args:
            raw_body: Untouched request body
            signature: Value of the signature header

        Returns:
            True if the event was applied, False if it was rejected or failed
        """
        try:
            self.verifier.authenticate(raw_body, signature)
        except InvalidSignatureError as e:
            logger.warning(f"Rejected webhook: {e}")
            return False

        try:
            event = parse_webhook_event(raw_body)
        except RazorpayWebhookError as e:
            logger.warning(f"Rejected webhook: {e}")
            return False

        logger.info(
            f"Processing webhook {event.event} for {event.entity_kind} {event.entity_id}",
            extra={"event": event.event},
        )

        try:
            async with self.session_factory() as db:
                reconciler = EventReconciler(
                    db,
                    self.processor,
                    enforce_event_order=self.settings.enforce_event_order,
                )
                await reconciler.apply_event(event)
            return True

        except BillingError as e:
            logger.error(
                f"Failed to apply webhook {event.event} for {event.entity_id}: {e}",
                extra={"event": event.event},
            )
            return False
        except Exception as e:
            logger.error(
                f"Exception while applying webhook {event.event} for {event.entity_id}: {e}",
                exc_info=True,
                extra={"event": event.event},
            )
            return False
