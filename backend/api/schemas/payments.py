"""
Order and payment request/response schemas. Amounts are minor units.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderCreateRequest(BaseModel):
    """Request to create a one-off order."""

    amount: int = Field(..., gt=0, description="Amount in minor units (paise for INR)")
    currency: Optional[str] = Field(None, description="ISO currency code (defaults to INR)")
    receipt: Optional[str] = Field(None, max_length=40)
    notes: Optional[dict[str, str]] = None

    model_config = {"json_schema_extra": {"example": {"amount": 50000, "currency": "INR"}}}


class OrderResponse(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: str


class PaymentCaptureRequest(BaseModel):
    """Request to capture an authorized payment."""

    amount: int = Field(..., gt=0, description="Amount in minor units")
    currency: Optional[str] = None


class PaymentResponse(BaseModel):
    """Local payment record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    razorpay_payment_id: str
    razorpay_order_id: Optional[str] = None
    amount: int
    currency: str
    status: str
    method: Optional[str] = None
