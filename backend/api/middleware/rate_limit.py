"""
Rate limiting using slowapi.

Limits are keyed on the real client IP. Storage is Redis when REDIS_URL is
set, otherwise in-process memory (one bucket per worker).

Rate Limits:
- Subscription creation: 10 per minute
- Customer, order, capture and addon writes: 20 per minute
- Manual status checks: 30 per minute
- Webhooks and everything else: 100 per minute
"""

import ipaddress
import logging
import re

from starlette.requests import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

# Simple pattern to quickly reject obviously invalid IPs before parsing
_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_valid_ip(value: str) -> bool:
    """Return True if *value* looks like a valid IPv4 or IPv6 address."""
    if not _IP_LIKE.match(value):
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _is_private_ip(value: str) -> bool:
    """Return True if *value* is a private, loopback, or link-local address.

    Private addresses in X-Forwarded-For can be spoofed to share a bucket
    with trusted infrastructure, so they are not honoured.
    """
    try:
        addr = ipaddress.ip_address(value)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """Extract the client IP from proxy headers, falling back to the remote address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First entry is the client
        candidate = forwarded.split(",")[0].strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        candidate = real_ip.strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    return get_remote_address(request)


DEFAULT_LIMIT = "100/minute"

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url and settings.environment == "production":
    logger.warning(
        "Rate limiter using in-memory storage; limits are per worker. Set REDIS_URL to share them."
    )

limiter = Limiter(
    key_func=get_client_ip,
    storage_uri=_storage_uri,
    default_limits=[DEFAULT_LIMIT],
)
