"""
Subscription Store - Local mirror of the payment provider's subscriptions.

Writes are whole-record upserts keyed on user_id, so replaying an event is
harmless and the last write wins.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from kuiqlee.db.errors import constraint_violated, is_foreign_key_violation, store_operation
from kuiqlee.db.models import Subscription, utc_now
from kuiqlee.exceptions import IdentityNotFoundError, SubscriptionConflictError
from kuiqlee.models.api import PlanId, SubscriptionStatus
from kuiqlee.models.domain import SubscriptionData

logger = get_logger(__name__)


class SubscriptionStore:
    """Reads and writes the subscriptions table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, subscription: SubscriptionData) -> None:
        """
        Replace the identity's subscription record with this one.

        Raises:
            IdentityNotFoundError: No identity with that id (foreign key violation)
            SubscriptionConflictError: Any other constraint violation
            StoreUnavailableError: Database failure
        """
        values = {
            "stripe_customer_id": subscription.provider_customer_id,
            "stripe_subscription_id": subscription.provider_subscription_id,
            "status": subscription.status.value,
            "plan_id": subscription.plan_id.value,
            "current_period_start": subscription.current_period_start,
            "current_period_end": subscription.current_period_end,
            "cancel_at_period_end": subscription.cancel_at_period_end,
        }
        stmt = insert(Subscription).values(user_id=subscription.identity_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.user_id],
            set_={**values, "updated_at": utc_now()},
        )

        async with store_operation(self.session, "upsert_subscription"):
            try:
                await self.session.execute(stmt)
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                if is_foreign_key_violation(e):
                    logger.warning(
                        "subscription_upsert_identity_missing",
                        identity_id=str(subscription.identity_id),
                    )
                    raise IdentityNotFoundError(subscription.identity_id) from None

                constraint = constraint_violated(e)
                logger.error(
                    "subscription_upsert_conflict",
                    identity_id=str(subscription.identity_id),
                    subscription_id=subscription.provider_subscription_id,
                    constraint=constraint,
                    error=str(e.orig),
                )
                raise SubscriptionConflictError(subscription.identity_id, constraint) from None

        logger.info(
            "subscription_upserted",
            identity_id=str(subscription.identity_id),
            status=subscription.status.value,
            plan_id=subscription.plan_id.value,
        )

    async def get_by_identity(self, identity_id: UUID) -> SubscriptionData | None:
        async with store_operation(self.session, "get_subscription"):
            result = await self.session.execute(
                select(Subscription).where(Subscription.user_id == identity_id)
            )
            row = result.scalar_one_or_none()
        return self._to_domain(row) if row else None

    async def get_by_provider_subscription_id(
        self, provider_subscription_id: str
    ) -> SubscriptionData | None:
        async with store_operation(self.session, "get_subscription_by_provider_id"):
            result = await self.session.execute(
                select(Subscription).where(
                    Subscription.stripe_subscription_id == provider_subscription_id
                )
            )
            row = result.scalar_one_or_none()
        return self._to_domain(row) if row else None

    async def is_premium(self, identity_id: UUID) -> bool:
        """True iff the identity's subscription status is active or trialing."""
        subscription = await self.get_by_identity(identity_id)
        return subscription is not None and subscription.is_entitled

    @staticmethod
    def _to_domain(row: Subscription) -> SubscriptionData:
        return SubscriptionData(
            identity_id=row.user_id,
            provider_customer_id=row.stripe_customer_id,
            provider_subscription_id=row.stripe_subscription_id,
            status=SubscriptionStatus(row.status),
            plan_id=PlanId(row.plan_id),
            current_period_start=row.current_period_start,
            current_period_end=row.current_period_end,
            cancel_at_period_end=row.cancel_at_period_end,
        )
