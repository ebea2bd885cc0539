"""
Billing Routes - Checkout, portal, subscription status and Stripe webhooks.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from kuiqlee.api.dependencies import (
    get_billing_service,
    get_current_identity,
    get_subscription_store,
    get_webhook_reconciler,
)
from kuiqlee.models.api import (
    CheckoutRequest,
    CheckoutResponse,
    PortalResponse,
    SubscriptionDetail,
    SubscriptionStatusResponse,
    WebhookAckResponse,
)
from kuiqlee.services.billing import BillingService
from kuiqlee.services.subscription_store import SubscriptionStore
from kuiqlee.services.webhook_reconciler import WebhookReconciler

router = APIRouter(prefix="/v1/billing", tags=["billing"])


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    identity_id: UUID = Depends(get_current_identity),
    service: BillingService = Depends(get_billing_service),
) -> CheckoutResponse:
    """
    Start a Stripe Checkout for the monthly or annual plan.

    Errors:
    - 400: Unknown plan
    - 503: Stripe or plan price not configured, or Stripe unavailable
    """
    session = await service.create_checkout(identity_id, request.plan_id)
    return CheckoutResponse(session_id=session.session_id, url=session.url)


@router.post("/portal", response_model=PortalResponse)
async def open_portal(
    identity_id: UUID = Depends(get_current_identity),
    service: BillingService = Depends(get_billing_service),
) -> PortalResponse:
    """
    Open the Stripe customer portal.

    Errors:
    - 404: No subscription on record
    """
    portal = await service.open_portal(identity_id)
    return PortalResponse(url=portal.url)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription(
    identity_id: UUID = Depends(get_current_identity),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
) -> SubscriptionStatusResponse:
    """Current subscription mirror. Does not require Stripe to be configured."""
    subscription = await subscriptions.get_by_identity(identity_id)
    if subscription is None:
        return SubscriptionStatusResponse(has_subscription=False, is_premium=False)

    is_active = subscription.is_entitled
    return SubscriptionStatusResponse(
        has_subscription=is_active,
        is_premium=is_active,
        subscription=SubscriptionDetail(
            status=subscription.status,
            plan_id=subscription.plan_id,
            current_period_end=(
                subscription.current_period_end.isoformat()
                if subscription.current_period_end
                else None
            ),
            cancel_at_period_end=subscription.cancel_at_period_end,
        ),
    )


@router.post("/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookAckResponse:
    """
    Handle Stripe webhook events.

    The signature is verified over the raw body, so it must be read as bytes.

    Errors:
    - 400: Signature verification failed (Stripe does not retry)
    - 503: Store or Stripe failure (Stripe redelivers)
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    result = await reconciler.handle(payload, signature)
    return WebhookAckResponse(status=result.outcome.value, event_id=result.event_id)
