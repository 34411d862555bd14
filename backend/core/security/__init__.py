"""
Security utilities for inbound webhook authentication.
"""

from .webhook_signature import WebhookSignatureVerifier, compute_signature, verify

__all__ = [
    "WebhookSignatureVerifier",
    "compute_signature",
    "verify",
]
