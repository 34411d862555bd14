"""
One-off order and payment capture routes.
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from api.dependencies import get_payment_service
from api.middleware.rate_limit import limiter
from api.schemas.payments import (
    OrderCreateRequest,
    OrderResponse,
    PaymentCaptureRequest,
    PaymentResponse,
)
from api.utils import http_error
from core.errors import BillingError
from infrastructure.config import get_settings
from services.payments import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Create a one-off order for checkout."""
    try:
        order = await payments.create_order(
            amount=body.amount,
            currency=body.currency or get_settings().default_currency,
            receipt=body.receipt,
            notes=body.notes,
        )
    except BillingError as e:
        raise http_error(e)
    return OrderResponse(
        id=order.id,
        amount=order.amount,
        currency=order.currency,
        receipt=order.receipt,
        status=order.status,
    )


@router.post("/payments/{payment_id}/capture", response_model=PaymentResponse)
@limiter.limit("20/minute")
async def capture_payment(
    request: Request,
    payment_id: str,
    body: PaymentCaptureRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Capture an authorized payment and record it."""
    try:
        payment = await payments.capture_payment(
            payment_id,
            amount=body.amount,
            currency=body.currency or get_settings().default_currency,
        )
    except BillingError as e:
        raise http_error(e)
    return PaymentResponse.model_validate(payment)
