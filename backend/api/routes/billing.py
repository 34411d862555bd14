"""
Billing and subscription API routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status

from api.dependencies import (
    get_event_reconciler,
    get_lifecycle_controller,
    get_upsert_resolver,
    get_webhook_processor,
)
from api.middleware.rate_limit import limiter
from api.schemas.billing import (
    AddonCreateRequest,
    AddonResponse,
    CustomerCreateRequest,
    CustomerResponse,
    PlanResponse,
    SubscriptionCheckResponse,
    SubscriptionCreateRequest,
    SubscriptionResponse,
    WebhookAck,
)
from api.utils import http_error
from core.errors import BillingError
from services.event_reconciler import EventReconciler
from services.subscription_lifecycle import SubscriptionLifecycleController
from services.upsert_resolver import UpsertResolver
from services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


@router.post("/customers", response_model=CustomerResponse)
@limiter.limit("20/minute")
async def create_customer(
    request: Request,
    body: CustomerCreateRequest,
    resolver: UpsertResolver = Depends(get_upsert_resolver),
):
    """
    Register a customer at the processor and store it locally.

    Returns the existing customer when one is already stored for the email
    or owning user.
    """
    try:
        customer, created = await resolver.create_customer(
            name=body.name,
            email=body.email,
            contact=body.contact,
            user_id=body.user_id,
            notes=body.notes,
        )
    except BillingError as e:
        raise http_error(e)

    response = CustomerResponse.model_validate(customer)
    response.created = created
    return response


@router.get("/plans/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    resolver: UpsertResolver = Depends(get_upsert_resolver),
):
    """Get a plan by processor id, mirroring it from the processor on first use."""
    try:
        plan = await resolver.resolve_plan(plan_id)
    except BillingError as e:
        raise http_error(e)
    return PlanResponse.model_validate(plan)


@router.post(
    "/create-subscription",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
async def create_subscription(
    request: Request,
    body: SubscriptionCreateRequest,
    controller: SubscriptionLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Create a subscription, or schedule a renewal when the customer already
    has an active cycle on the same plan.

    The response carries the processor's `short_url` where the customer
    authorizes the mandate.
    """
    try:
        snapshot = await controller.create_or_renew_subscription(
            customer_foreign_id=body.customer_foreign_id,
            plan_foreign_id=body.plan_foreign_id,
            total_count=body.total_count,
            addons=[addon.model_dump() for addon in body.addons] if body.addons else None,
            notes=body.notes,
        )
    except BillingError as e:
        raise http_error(e)
    return snapshot.to_dict()


@router.post("/webhook", response_model=WebhookAck)
@limiter.limit("100/minute")
async def handle_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
    x_razorpay_signature: Annotated[str | None, Header(alias="X-Razorpay-Signature")] = None,
    webhook_processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Receive a Razorpay webhook.

    Delivery is acknowledged immediately; signature verification and
    reconciliation run afterwards on the untouched raw body, and failures
    are only logged. Handled events:
    - subscription.authenticated / activated / charged / resumed / pending
    - subscription.halted / cancelled / completed / ended / expired
    - payment.authorized / captured / failed
    - order.paid
    - invoice.paid / partially_paid / expired
    """
    # Raw bytes, before any JSON parsing
    body = await request.body()
    signature = x_signature or x_razorpay_signature

    if not signature:
        logger.warning("Webhook received without signature")

    background_tasks.add_task(webhook_processor.process, body, signature)
    return WebhookAck()


@router.post("/check-subscription/{subscription_id}", response_model=SubscriptionCheckResponse)
@limiter.limit("30/minute")
async def check_subscription(
    request: Request,
    subscription_id: str,
    reconciler: EventReconciler = Depends(get_event_reconciler),
    controller: SubscriptionLifecycleController = Depends(get_lifecycle_controller),
):
    """Re-read a subscription from the processor and reconcile missed webhooks."""
    try:
        _, changed = await reconciler.check_subscription_status(subscription_id)
        snapshot = await controller.get_snapshot(subscription_id)
    except BillingError as e:
        raise http_error(e)
    return {"changed": changed, "subscription": snapshot.to_dict()}


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    controller: SubscriptionLifecycleController = Depends(get_lifecycle_controller),
):
    """Get the stored subscription with its audit trail."""
    try:
        snapshot = await controller.get_snapshot(subscription_id)
    except BillingError as e:
        raise http_error(e)
    return snapshot.to_dict()


@router.post(
    "/subscriptions/{subscription_id}/addons",
    response_model=AddonResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
async def add_subscription_addon(
    request: Request,
    subscription_id: str,
    body: AddonCreateRequest,
    controller: SubscriptionLifecycleController = Depends(get_lifecycle_controller),
):
    """Add a one-time charge to the subscription's next invoice."""
    try:
        addon = await controller.add_addon(
            subscription_id,
            name=body.name,
            amount=body.amount,
            quantity=body.quantity,
            currency=body.currency,
        )
    except BillingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to add addon to {subscription_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add addon",
        )
    return AddonResponse(
        id=addon.id,
        name=addon.name,
        amount=addon.amount,
        currency=addon.currency,
        quantity=addon.quantity,
    )
