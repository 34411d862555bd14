"""
Billing and subscription request/response schemas.

Request fields accept both the camelCase names used by existing clients
(`planForeignId`) and snake_case. Required ids are optional at the schema
level so a missing id reaches the service and is reported as a 400.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CustomerCreateRequest(BaseModel):
    """Request to register a customer."""

    name: Optional[str] = Field(None, description="Customer name")
    email: Optional[str] = Field(None, description="Customer email (unique)")
    contact: Optional[str] = Field(None, description="Phone number with country code")
    user_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("userId", "user_id"),
        description="Owning application user",
    )
    notes: Optional[dict[str, str]] = Field(None, description="Free-form notes")

    model_config = {
        "json_schema_extra": {
            "example": {"name": "A", "email": "a@x.com", "contact": "+911234567890"}
        }
    }


class CustomerResponse(BaseModel):
    """Local customer record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    razorpay_customer_id: str
    name: str
    email: Optional[str] = None
    contact: str
    user_id: Optional[str] = None
    notes: dict[str, Any] = Field(default_factory=dict)
    created: bool = Field(False, description="Whether this request created the customer")


class PlanResponse(BaseModel):
    """Local plan record. `amount` is in minor units, `amount_major` in major units."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    razorpay_plan_id: str
    name: str
    description: str
    amount: int
    amount_major: Decimal
    currency: str
    interval: str
    interval_count: int
    billing_period: str
    features: list[str] = Field(default_factory=list)
    is_active: bool


class AddonItem(BaseModel):
    """Upfront charge added to a new subscription."""

    name: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Amount in minor units")
    currency: Optional[str] = None


class SubscriptionCreateRequest(BaseModel):
    """Request to create or renew a subscription."""

    plan_foreign_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("planForeignId", "plan_foreign_id", "plan_id"),
        description="Razorpay plan id",
    )
    customer_foreign_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("customerForeignId", "customer_foreign_id", "customer_id"),
        description="Razorpay customer id",
    )
    total_count: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("totalCount", "total_count"),
        description="Billing cycles (defaults from the plan's billing period)",
    )
    addons: Optional[list[AddonItem]] = None
    notes: Optional[dict[str, str]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "planForeignId": "plan_00000000000001",
                "customerForeignId": "cust_00000000000001",
                "totalCount": 4,
            }
        }
    }


class AuditEntry(BaseModel):
    """One entry of a subscription's audit trail."""

    kind: str
    actor: str
    source_event: Optional[str] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    occurred_at: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    """Subscription snapshot with customer and plan projections."""

    id: str
    razorpay_subscription_id: str
    status: str
    billing_period: str
    total_count: int
    paid_count: int
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    start_at: Optional[datetime] = None
    charge_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    short_url: Optional[str] = Field(None, description="Hosted authorization link")
    pending_activation: bool
    is_renewal: bool
    is_scheduled: bool
    manually_checked_at: Optional[datetime] = None
    customer: dict[str, Any] = Field(default_factory=dict)
    plan: dict[str, Any] = Field(default_factory=dict)
    addons: list[dict[str, Any]] = Field(default_factory=list)
    discount: Optional[dict[str, Any]] = None
    audit: list[AuditEntry] = Field(default_factory=list)


class SubscriptionCheckResponse(BaseModel):
    """Result of a manual status check against the processor."""

    changed: bool = Field(..., description="Whether the processor state differed from ours")
    subscription: SubscriptionResponse


class AddonCreateRequest(BaseModel):
    """Request to add a one-time charge to a subscription."""

    name: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Amount in minor units")
    quantity: int = Field(1, ge=1)
    currency: Optional[str] = None


class AddonResponse(BaseModel):
    id: str
    name: str
    amount: int
    currency: str
    quantity: int


class WebhookAck(BaseModel):
    """Immediate acknowledgement of a webhook delivery."""

    status: str = "received"
