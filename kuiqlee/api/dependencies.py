"""
FastAPI Dependencies - Service wiring and bearer authentication.

Collaborators that hold no per-request state (password hasher, token codec,
payment provider) are built once and cached; stores are bound to the
request's database session.
"""

from functools import lru_cache
from uuid import UUID

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from kuiqlee.config import settings
from kuiqlee.db.session import get_write_db
from kuiqlee.exceptions import ProviderNotConfiguredError
from kuiqlee.services.billing import BillingService
from kuiqlee.services.credential_store import CredentialStore
from kuiqlee.services.entitlement import EntitlementService
from kuiqlee.services.identity_store import IdentityStore
from kuiqlee.services.model_client import ModelClient
from kuiqlee.services.passwords import PasswordService
from kuiqlee.services.payment_provider import PaymentProvider
from kuiqlee.services.stripe_provider import StripeProvider
from kuiqlee.services.subscription_store import SubscriptionStore
from kuiqlee.services.tokens import BearerTokenCodec
from kuiqlee.services.usage_ledger import UsageLedger
from kuiqlee.services.webhook_reconciler import WebhookReconciler

# Bearer token scheme; missing tokens are reported by the service, not FastAPI
bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_password_service() -> PasswordService:
    return PasswordService(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
    )


@lru_cache
def get_token_codec() -> BearerTokenCodec:
    return BearerTokenCodec(settings.jwt_secret, settings.jwt_algorithm)


def get_payment_provider() -> PaymentProvider:
    """
    Stripe provider for billing routes.

    Raises:
        ProviderNotConfiguredError: Stripe secrets are not set (503)
    """
    if not settings.stripe_configured:
        raise ProviderNotConfiguredError("Payment provider")
    return _stripe_provider()


@lru_cache
def _stripe_provider() -> StripeProvider:
    return StripeProvider(settings.stripe_api_key, settings.stripe_webhook_secret)


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared outbound client created in the application lifespan."""
    client: httpx.AsyncClient = request.app.state.http_client
    return client


def get_model_client(http: httpx.AsyncClient = Depends(get_http_client)) -> ModelClient:
    return ModelClient(http, settings)


def get_entitlement_service(
    db: AsyncSession = Depends(get_write_db),
    passwords: PasswordService = Depends(get_password_service),
    tokens: BearerTokenCodec = Depends(get_token_codec),
) -> EntitlementService:
    return EntitlementService(
        identities=IdentityStore(db),
        credentials=CredentialStore(db),
        usage=UsageLedger(db),
        subscriptions=SubscriptionStore(db),
        passwords=passwords,
        tokens=tokens,
        settings=settings,
    )


def get_billing_service(
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> BillingService:
    return BillingService(
        provider=provider,
        identities=IdentityStore(db),
        subscriptions=SubscriptionStore(db),
        settings=settings,
    )


def get_subscription_store(db: AsyncSession = Depends(get_write_db)) -> SubscriptionStore:
    return SubscriptionStore(db)


def get_webhook_reconciler(
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookReconciler:
    return WebhookReconciler(provider, SubscriptionStore(db), settings)


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Raw bearer token from the Authorization header, if any."""
    return credentials.credentials if credentials else None


async def get_current_identity(
    token: str | None = Depends(get_bearer_token),
    service: EntitlementService = Depends(get_entitlement_service),
) -> UUID:
    """
    FastAPI dependency resolving the caller's identity.

    Raises:
        AuthenticationError: Missing, malformed, expired or revoked token (401)
    """
    return await service.verify_credential(token)
