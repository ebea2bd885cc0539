"""
Webhook Reconciler - Applies payment provider events to the Subscription Store.

Events arrive at least once and in any order. Every mutation is a whole-record
upsert keyed by identity, so replays are harmless and the last write wins.

Failure contract:
- Signature failure: WebhookVerificationError, nothing mutated, never retried.
- Events we cannot attribute to an identity or plan: logged and dropped (2xx),
  since redelivery would not fix them.
- Subscription statuses we do not mirror: logged and ignored (2xx).
- Constraint conflicts in the mirror: logged as conflicts and dropped (2xx).
- Store or provider failure after verification: propagates as UnavailableError
  so the provider redelivers.
"""

from dataclasses import dataclass
from enum import Enum

from structlog import get_logger

from kuiqlee.config import Settings
from kuiqlee.exceptions import (
    IdentityNotFoundError,
    SubscriptionConflictError,
    UnsupportedSubscriptionError,
)
from kuiqlee.models.api import PlanId, SubscriptionStatus
from kuiqlee.models.domain import SubscriptionData
from kuiqlee.observability.metrics import metrics
from kuiqlee.observability.tracing import get_tracer
from kuiqlee.services.payment_provider import (
    CheckoutCompletedEvent,
    InvoiceEvent,
    PaymentProvider,
    ProviderSubscription,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
    WebhookEvent,
)
from kuiqlee.services.protocols import SubscriptionRepository

logger = get_logger(__name__)
tracer = get_tracer(__name__)


class ReconcileOutcome(str, Enum):
    """What the reconciler did with a verified event."""

    APPLIED = "applied"
    IGNORED = "ignored"
    DROPPED = "dropped"


@dataclass(frozen=True)
class ReconcileResult:
    """Result of handling one webhook delivery."""

    event_id: str
    event_type: str
    outcome: ReconcileOutcome


class WebhookReconciler:
    """Verifies, decodes and applies payment provider webhooks."""

    def __init__(
        self,
        provider: PaymentProvider,
        subscriptions: SubscriptionRepository,
        settings: Settings,
    ) -> None:
        self.provider = provider
        self.subscriptions = subscriptions
        self.price_plans = {
            price_id: plan
            for price_id, plan in (
                (settings.stripe_price_monthly, PlanId.MONTHLY),
                (settings.stripe_price_annual, PlanId.ANNUAL),
            )
            if price_id
        }

    async def handle(self, payload: bytes, signature: str) -> ReconcileResult:
        """
        Handle one webhook delivery.

        Raises:
            WebhookVerificationError: Signature or payload invalid
            UnavailableError: Store or provider failure, safe to redeliver
        """
        event = await self.provider.verify_webhook(payload, signature)

        with tracer.start_as_current_span("webhook.reconcile") as span:
            span.set_attribute("event_type", event.event_type)
            span.set_attribute("event_id", event.event_id)

            logger.info(
                "stripe_webhook_received",
                event_id=event.event_id,
                event_type=event.event_type,
            )

            outcome = await self._dispatch(event)

        metrics.record_webhook(event.event_type, outcome.value)
        logger.info(
            "stripe_webhook_processed",
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome.value,
        )
        return ReconcileResult(
            event_id=event.event_id, event_type=event.event_type, outcome=outcome
        )

    async def _dispatch(self, event: WebhookEvent) -> ReconcileOutcome:
        if isinstance(event, CheckoutCompletedEvent):
            return await self._checkout_completed(event)
        if isinstance(event, SubscriptionChangedEvent):
            return await self._mirror(event.event_id, event.subscription, deleted=False)
        if isinstance(event, SubscriptionDeletedEvent):
            return await self._mirror(event.event_id, event.subscription, deleted=True)
        if isinstance(event, InvoiceEvent):
            # Subscription events carry the state change; invoices are audit only
            if event.succeeded:
                logger.info(
                    "stripe_invoice_payment_succeeded",
                    event_id=event.event_id,
                    invoice_id=event.invoice_id,
                    amount_minor=event.amount_minor,
                )
            else:
                logger.warning(
                    "stripe_invoice_payment_failed",
                    event_id=event.event_id,
                    invoice_id=event.invoice_id,
                    customer_id=event.customer_id,
                )
            return ReconcileOutcome.IGNORED

        logger.info("stripe_webhook_unhandled", event_id=event.event_id, event_type=event.event_type)
        return ReconcileOutcome.IGNORED

    async def _checkout_completed(self, event: CheckoutCompletedEvent) -> ReconcileOutcome:
        if event.identity_id is None:
            logger.error("stripe_checkout_missing_user_id", event_id=event.event_id)
            return ReconcileOutcome.DROPPED

        if event.subscription_id is None:
            logger.warning(
                "stripe_checkout_without_subscription",
                event_id=event.event_id,
                session_id=event.session_id,
            )
            return ReconcileOutcome.IGNORED

        # The session carries no subscription state; fetch the current one
        try:
            subscription = await self.provider.retrieve_subscription(event.subscription_id)
        except UnsupportedSubscriptionError as e:
            logger.warning(
                "stripe_checkout_subscription_unsupported",
                event_id=event.event_id,
                subscription_id=e.subscription_id,
                status=e.status,
            )
            return ReconcileOutcome.IGNORED

        plan_id = event.plan_id or self._resolve_plan(subscription)
        if plan_id is None:
            logger.error(
                "stripe_subscription_plan_unknown",
                event_id=event.event_id,
                subscription_id=subscription.subscription_id,
                price_id=subscription.price_id,
            )
            return ReconcileOutcome.DROPPED

        return await self._upsert(
            event.event_id,
            SubscriptionData(
                identity_id=event.identity_id,
                provider_customer_id=subscription.customer_id,
                provider_subscription_id=subscription.subscription_id,
                status=subscription.status,
                plan_id=plan_id,
                current_period_start=subscription.current_period_start,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
            ),
        )

    async def _mirror(
        self, event_id: str, subscription: ProviderSubscription, deleted: bool
    ) -> ReconcileOutcome:
        identity_id = subscription.identity_id
        plan_id = self._resolve_plan(subscription)

        if identity_id is None:
            # Metadata stripped; fall back to the mirror row written at checkout
            known = await self.subscriptions.get_by_provider_subscription_id(
                subscription.subscription_id
            )
            if known is None:
                logger.error(
                    "stripe_subscription_missing_user_id",
                    event_id=event_id,
                    subscription_id=subscription.subscription_id,
                )
                return ReconcileOutcome.DROPPED
            identity_id = known.identity_id
            plan_id = plan_id or known.plan_id

        if plan_id is None:
            logger.error(
                "stripe_subscription_plan_unknown",
                event_id=event_id,
                subscription_id=subscription.subscription_id,
                price_id=subscription.price_id,
            )
            return ReconcileOutcome.DROPPED

        return await self._upsert(
            event_id,
            SubscriptionData(
                identity_id=identity_id,
                provider_customer_id=subscription.customer_id,
                provider_subscription_id=subscription.subscription_id,
                status=SubscriptionStatus.CANCELED if deleted else subscription.status,
                plan_id=plan_id,
                current_period_start=subscription.current_period_start,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=True if deleted else subscription.cancel_at_period_end,
            ),
        )

    def _resolve_plan(self, subscription: ProviderSubscription) -> PlanId | None:
        """Plan from metadata, else inferred from the configured price ids."""
        if subscription.plan_id is not None:
            return subscription.plan_id
        if subscription.price_id is None:
            return None
        return self.price_plans.get(subscription.price_id)

    async def _upsert(self, event_id: str, data: SubscriptionData) -> ReconcileOutcome:
        try:
            await self.subscriptions.upsert(data)
        except IdentityNotFoundError:
            # Account deleted since checkout; redelivery cannot help
            logger.error(
                "stripe_subscription_identity_missing",
                event_id=event_id,
                identity_id=str(data.identity_id),
            )
            return ReconcileOutcome.DROPPED
        except SubscriptionConflictError as e:
            # e.g. the provider subscription id is already mirrored for another identity
            logger.error(
                "stripe_subscription_conflict",
                event_id=event_id,
                identity_id=str(data.identity_id),
                subscription_id=data.provider_subscription_id,
                constraint=e.constraint,
            )
            return ReconcileOutcome.DROPPED
        return ReconcileOutcome.APPLIED
