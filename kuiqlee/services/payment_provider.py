"""
Payment Provider Protocol - Provider-agnostic interface.

Webhook payloads are decoded into a closed set of typed event variants.
Anything the reconciler does not act on becomes UnknownEvent.

NO DICTIONARIES - All data uses strongly typed dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from kuiqlee.models.api import PlanId, SubscriptionStatus


@dataclass(frozen=True)
class ProviderSubscription:
    """
    Subscription object as the provider reports it.

    identity_id and plan_id come from metadata attached at checkout and may be
    missing on subscriptions created outside our checkout flow.
    """

    subscription_id: str
    customer_id: str | None
    status: SubscriptionStatus
    identity_id: UUID | None
    plan_id: PlanId | None
    price_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool


@dataclass(frozen=True)
class CheckoutSessionRequest:
    """Checkout request for one subscription plan."""

    identity_id: UUID
    customer_email: str
    plan_id: PlanId
    price_id: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout session."""

    session_id: str
    url: str


@dataclass(frozen=True)
class PortalSession:
    """Hosted self-service billing portal session."""

    url: str


# ============================================================================
# Webhook event variants
# ============================================================================


@dataclass(frozen=True)
class CheckoutCompletedEvent:
    """checkout.session.completed"""

    event_id: str
    event_type: str
    session_id: str
    identity_id: UUID | None
    plan_id: PlanId | None
    subscription_id: str | None


@dataclass(frozen=True)
class SubscriptionChangedEvent:
    """customer.subscription.created / customer.subscription.updated"""

    event_id: str
    event_type: str
    subscription: ProviderSubscription


@dataclass(frozen=True)
class SubscriptionDeletedEvent:
    """customer.subscription.deleted"""

    event_id: str
    event_type: str
    subscription: ProviderSubscription


@dataclass(frozen=True)
class InvoiceEvent:
    """invoice.payment_succeeded / invoice.payment_failed"""

    event_id: str
    event_type: str
    invoice_id: str
    customer_id: str | None
    amount_minor: int | None
    succeeded: bool


@dataclass(frozen=True)
class UnknownEvent:
    """Any event type we acknowledge without acting on."""

    event_id: str
    event_type: str


WebhookEvent = (
    CheckoutCompletedEvent
    | SubscriptionChangedEvent
    | SubscriptionDeletedEvent
    | InvoiceEvent
    | UnknownEvent
)


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations: StripeProvider
    """

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        """
        Create a hosted checkout session for a subscription.

        Raises:
            PaymentProviderError: If provider call fails
        """
        ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> PortalSession:
        """
        Create a billing portal session for an existing customer.

        Raises:
            PaymentProviderError: If provider call fails
        """
        ...

    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        """
        Fetch the current state of a subscription.

        Raises:
            PaymentProviderError: If provider call fails
            UnsupportedSubscriptionError: If the status is not one we mirror
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify webhook signature over the raw payload and decode the event.

        Raises:
            WebhookVerificationError: If verification fails
        """
        ...
