"""
Billing Service - Checkout handoff and billing portal access.

Subscription state is only ever written by the webhook reconciler; this
service reads it and hands the caller off to the payment provider.
"""

from uuid import UUID

from structlog import get_logger

from kuiqlee.config import Settings
from kuiqlee.exceptions import (
    IdentityNotFoundError,
    InvalidInputError,
    InvalidPlanError,
    ProviderNotConfiguredError,
    SubscriptionNotFoundError,
)
from kuiqlee.models.api import PlanId
from kuiqlee.services.payment_provider import (
    CheckoutSession,
    CheckoutSessionRequest,
    PaymentProvider,
    PortalSession,
)
from kuiqlee.services.protocols import IdentityRepository, SubscriptionRepository

logger = get_logger(__name__)


class BillingService:
    """Creates checkout and portal sessions."""

    def __init__(
        self,
        provider: PaymentProvider,
        identities: IdentityRepository,
        subscriptions: SubscriptionRepository,
        settings: Settings,
    ) -> None:
        self.provider = provider
        self.identities = identities
        self.subscriptions = subscriptions
        self.landing_page_url = settings.landing_page_url.rstrip("/")
        self.prices = {
            PlanId.MONTHLY: settings.stripe_price_monthly,
            PlanId.ANNUAL: settings.stripe_price_annual,
        }

    async def create_checkout(self, identity_id: UUID, plan_id: str) -> CheckoutSession:
        """
        Start a hosted checkout for a plan.

        Raises:
            InvalidPlanError: plan_id is not monthly or annual
            ProviderNotConfiguredError: No price configured for the plan
            IdentityNotFoundError: No such identity
            PaymentProviderError: Provider call failed
        """
        try:
            plan = PlanId(plan_id)
        except ValueError:
            raise InvalidPlanError(plan_id) from None

        price_id = self.prices[plan]
        if not price_id:
            logger.error("stripe_price_not_configured", plan_id=plan.value)
            raise ProviderNotConfiguredError(f"Stripe price for {plan.value} plan")

        identity = await self.identities.find_by_id(identity_id)
        if identity is None:
            raise IdentityNotFoundError(identity_id)

        return await self.provider.create_checkout_session(
            CheckoutSessionRequest(
                identity_id=identity_id,
                customer_email=identity.email,
                plan_id=plan,
                price_id=price_id,
                success_url=(
                    f"{self.landing_page_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"
                ),
                cancel_url=f"{self.landing_page_url}/payment/canceled",
            )
        )

    async def open_portal(self, identity_id: UUID) -> PortalSession:
        """
        Open the provider's self-service portal for the identity's customer.

        Raises:
            SubscriptionNotFoundError: Identity has never subscribed
            InvalidInputError: Subscription has no provider customer attached
            PaymentProviderError: Provider call failed
        """
        subscription = await self.subscriptions.get_by_identity(identity_id)
        if subscription is None:
            raise SubscriptionNotFoundError(identity_id)
        if not subscription.provider_customer_id:
            raise InvalidInputError("No Stripe customer ID found")

        return await self.provider.create_portal_session(
            subscription.provider_customer_id, self.landing_page_url
        )
