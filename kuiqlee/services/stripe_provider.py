"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - Provider objects are decoded into typed dataclasses at this
boundary; nothing past it sees a raw Stripe payload.
"""

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import stripe
from structlog import get_logger

from kuiqlee.exceptions import (
    PaymentProviderError,
    UnsupportedSubscriptionError,
    WebhookVerificationError,
)
from kuiqlee.models.api import PlanId, SubscriptionStatus
from kuiqlee.services.payment_provider import (
    CheckoutCompletedEvent,
    CheckoutSession,
    CheckoutSessionRequest,
    InvoiceEvent,
    PortalSession,
    ProviderSubscription,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
    UnknownEvent,
    WebhookEvent,
)

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

SUPPORTED_STATUSES = frozenset(status.value for status in SubscriptionStatus)


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC)


def _identity_id(metadata: Mapping[str, Any] | None) -> UUID | None:
    raw = (metadata or {}).get("user_id")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        logger.warning("stripe_metadata_user_id_invalid", user_id=str(raw)[:64])
        return None


def _plan_id(metadata: Mapping[str, Any] | None) -> PlanId | None:
    raw = (metadata or {}).get("plan_id")
    try:
        return PlanId(raw) if raw else None
    except ValueError:
        logger.warning("stripe_metadata_plan_id_invalid", plan_id=str(raw)[:32])
        return None


def _customer_id(value: Any) -> str | None:
    # customer is an id string unless the object was expanded
    if value is None or isinstance(value, str):
        return value
    return str(value.get("id")) if value.get("id") else None


def decode_subscription(obj: Mapping[str, Any]) -> ProviderSubscription:
    """
    Decode a Stripe subscription object.

    Period fields live on the subscription in older API versions and on its
    items in newer ones; the first item is used as fallback.
    """
    items = (obj.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    period_start = obj.get("current_period_start") or first_item.get("current_period_start")
    period_end = obj.get("current_period_end") or first_item.get("current_period_end")

    # Raises ValueError for statuses we do not mirror (e.g. "paused")
    status = SubscriptionStatus(obj.get("status"))

    metadata = obj.get("metadata") or {}
    return ProviderSubscription(
        subscription_id=str(obj.get("id")),
        customer_id=_customer_id(obj.get("customer")),
        status=status,
        identity_id=_identity_id(metadata),
        plan_id=_plan_id(metadata),
        price_id=price.get("id"),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
    )


def decode_event(event: Mapping[str, Any]) -> WebhookEvent:
    """Decode a verified Stripe event into one of the typed variants."""
    event_id = str(event.get("id", ""))
    event_type = str(event.get("type", ""))
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        metadata = obj.get("metadata") or {}
        subscription = obj.get("subscription")
        if subscription is not None and not isinstance(subscription, str):
            subscription = subscription.get("id")
        return CheckoutCompletedEvent(
            event_id=event_id,
            event_type=event_type,
            session_id=str(obj.get("id", "")),
            identity_id=_identity_id(metadata),
            plan_id=_plan_id(metadata),
            subscription_id=subscription,
        )

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED):
        try:
            subscription = decode_subscription(obj)
        except ValueError:
            logger.warning(
                "stripe_subscription_status_unsupported",
                event_id=event_id,
                status=str(obj.get("status")),
            )
            return UnknownEvent(event_id=event_id, event_type=event_type)

        if event_type == SUBSCRIPTION_DELETED:
            return SubscriptionDeletedEvent(
                event_id=event_id, event_type=event_type, subscription=subscription
            )
        return SubscriptionChangedEvent(
            event_id=event_id, event_type=event_type, subscription=subscription
        )

    if event_type in (INVOICE_PAYMENT_SUCCEEDED, INVOICE_PAYMENT_FAILED):
        succeeded = event_type == INVOICE_PAYMENT_SUCCEEDED
        amount = obj.get("amount_paid") if succeeded else obj.get("amount_due")
        return InvoiceEvent(
            event_id=event_id,
            event_type=event_type,
            invoice_id=str(obj.get("id", "")),
            customer_id=_customer_id(obj.get("customer")),
            amount_minor=int(amount) if amount is not None else None,
            succeeded=succeeded,
        )

    return UnknownEvent(event_id=event_id, event_type=event_type)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe. The API key is passed
    on every request rather than set on the stripe module.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        """
        Create a subscription-mode Checkout Session.

        The identity and plan are attached as metadata on both the session and
        the subscription it creates, so later subscription events resolve to
        the same identity.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        metadata = {
            "user_id": str(request.identity_id),
            "plan_id": request.plan_id.value,
        }
        try:
            logger.info(
                "creating_stripe_checkout_session",
                identity_id=str(request.identity_id),
                plan_id=request.plan_id.value,
            )

            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="subscription",
                payment_method_types=["card"],
                customer_email=request.customer_email,
                line_items=[{"price": request.price_id, "quantity": 1}],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )

            logger.info("stripe_checkout_session_created", session_id=session.id)

            return CheckoutSession(session_id=session.id, url=session.url or "")

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Checkout session failed: {exc}") from exc

    async def create_portal_session(self, customer_id: str, return_url: str) -> PortalSession:
        """
        Create a customer billing portal session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            portal = stripe.billing_portal.Session.create(
                api_key=self.api_key,
                customer=customer_id,
                return_url=return_url,
            )
            logger.info("stripe_portal_session_created", customer_id=customer_id)
            return PortalSession(url=portal.url)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_portal_session_failed",
                customer_id=customer_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Portal session failed: {exc}") from exc

    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        """
        Fetch a subscription from Stripe.

        Raises:
            PaymentProviderError: If Stripe API call fails or the payload is malformed
            UnsupportedSubscriptionError: If the subscription status is not mirrored
        """
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_retrieve_failed",
                subscription_id=subscription_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Failed to retrieve subscription: {exc}") from exc

        data = json.loads(str(subscription))
        status = data.get("status")
        if status not in SUPPORTED_STATUSES:
            logger.warning(
                "stripe_subscription_status_unsupported",
                subscription_id=subscription_id,
                status=str(status),
            )
            raise UnsupportedSubscriptionError(subscription_id, str(status))

        try:
            return decode_subscription(data)
        except ValueError as exc:
            raise PaymentProviderError(f"Unsupported subscription: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and decode a Stripe webhook event.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header value

        Returns:
            Typed webhook event

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("stripe_webhook_signature_invalid", error=str(exc))
            raise WebhookVerificationError(str(exc)) from exc
        except ValueError as exc:
            logger.warning("stripe_webhook_payload_invalid", error=str(exc))
            raise WebhookVerificationError(f"Invalid payload: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        # Decode from the verified bytes so variants see plain JSON
        return decode_event(json.loads(payload))
