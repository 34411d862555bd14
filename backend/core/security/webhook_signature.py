"""
Webhook signature verification.

The processor signs the exact bytes it sends with HMAC-SHA256 keyed by the
shared webhook secret. Verification must run on the untouched request body:
re-serialising parsed JSON changes key order and number formatting.
"""

import hashlib
import hmac
import logging
from typing import Optional

from ..errors import InvalidSignatureError

logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify(raw_body: bytes, provided_signature: Optional[str], shared_secret: Optional[str]) -> bool:
    """Return True when the signature matches the raw body under the shared secret."""
    if not shared_secret or not provided_signature:
        return False
    expected = compute_signature(raw_body, shared_secret)
    return hmac.compare_digest(expected.encode("utf-8"), provided_signature.strip().encode("utf-8"))


class WebhookSignatureVerifier:
    """Gate in front of the event reconciler."""

    def __init__(self, secret: Optional[str], bypass: bool = False):
        """
        Args:
            secret: Shared webhook secret configured at the processor
            bypass: Accept unsigned events (local development only)
        """
        self.secret = secret
        self.bypass = bypass

        if bypass:
            logger.warning("Webhook signature verification is BYPASSED; never enable this in production")
        elif not secret:
            logger.warning("Webhook secret not configured; every webhook will be rejected")

    def authenticate(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Raise unless the body is authentic.

        Raises:
            InvalidSignatureError: If the signature is missing or does not match
        """
        if self.bypass:
            return
        if not signature:
            raise InvalidSignatureError("Missing webhook signature")
        if not verify(raw_body, signature, self.secret):
            raise InvalidSignatureError("Invalid webhook signature")
