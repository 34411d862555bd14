"""
Shared API utility functions.
"""

import logging

from fastapi import HTTPException, status

from core.errors import (
    BillingError,
    InvalidSignatureError,
    NotFoundError,
    PersistenceError,
    PlanNotFoundError,
    ProcessorError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def http_error(exc: BillingError) -> HTTPException:
    """Map a billing error onto the HTTP status the caller should see."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidSignatureError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, PlanNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_dict())
    if isinstance(exc, ProcessorError):
        # Processor code/description are surfaced verbatim
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_dict())

    logger.error(f"Unmapped billing error: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Billing operation failed",
    )
