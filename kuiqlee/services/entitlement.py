"""
Entitlement Service - Credentials, premium resolution and free tier metering.

Handlers are stateless; every decision re-reads the stores. The token's
is_premium claim is never trusted for entitlement.

Metering rules:
- Premium identities (subscription active or trialing) are unlimited and
  nothing is recorded for them.
- A domain already in the identity's ledger is always allowed.
- Otherwise a new domain is allowed iff used < limit.
- The unique (identity, domain) constraint is the safety net: a concurrent
  first use of the same domain resolves to one row, and the loser sees
  "already recorded".
"""

import re
from datetime import UTC, datetime, timedelta
from uuid import UUID

from structlog import get_logger

from kuiqlee.config import Settings
from kuiqlee.exceptions import (
    EmailAlreadyRegisteredError,
    IdentityNotFoundError,
    InvalidCredentialsError,
    InvalidEmailError,
    MalformedTokenError,
    MissingTokenError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenRevokedError,
    UsageLimitReachedError,
    WeakPasswordError,
)
from kuiqlee.models.domain import (
    AuthResult,
    IdentityRecord,
    IssuedCredential,
    RecordUsageResult,
    UsageRecordData,
    UsageSnapshot,
)
from kuiqlee.observability.metrics import metrics
from kuiqlee.services.domains import normalize_domain
from kuiqlee.services.passwords import PasswordService
from kuiqlee.services.protocols import (
    CredentialRepository,
    IdentityRepository,
    SubscriptionRepository,
    UsageRepository,
)
from kuiqlee.services.tokens import BearerTokenCodec

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_HISTORY_LIMIT = 200


def normalize_email(email: str) -> str:
    """Trim and lower-case an email, then check its syntax."""
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidEmailError()
    return normalized


class EntitlementService:
    """
    Issues and verifies credentials and decides metered access.

    Stores are injected per request; the password service and token codec are
    built once at startup.
    """

    def __init__(
        self,
        identities: IdentityRepository,
        credentials: CredentialRepository,
        usage: UsageRepository,
        subscriptions: SubscriptionRepository,
        passwords: PasswordService,
        tokens: BearerTokenCodec,
        settings: Settings,
    ) -> None:
        self.identities = identities
        self.credentials = credentials
        self.usage = usage
        self.subscriptions = subscriptions
        self.passwords = passwords
        self.tokens = tokens
        self.token_ttl = timedelta(days=settings.token_ttl_days)
        self.password_min_length = settings.password_min_length
        self.domain_limit = settings.free_tier_domain_limit

    # ========================================================================
    # Credentials
    # ========================================================================

    async def register(self, email: str, password: str) -> AuthResult:
        """
        Create an identity and issue its first credential.

        Raises:
            InvalidEmailError: Email fails the syntax check
            WeakPasswordError: Password shorter than the minimum
            EmailAlreadyRegisteredError: Email (case-insensitively) already taken
            StoreUnavailableError: Database failure
        """
        normalized = normalize_email(email)
        if len(password) < self.password_min_length:
            raise WeakPasswordError(self.password_min_length)

        if await self.identities.find_by_email(normalized) is not None:
            metrics.record_auth("register", "conflict")
            raise EmailAlreadyRegisteredError(normalized)

        # The store still raises EmailAlreadyRegisteredError on a concurrent insert
        identity = await self.identities.create(normalized, self.passwords.hash(password))

        # A new identity never inherits a subscription
        credential = await self._issue(identity, is_premium=False)
        metrics.record_auth("register", "success")
        logger.info("identity_registered", identity_id=str(identity.identity_id))
        return AuthResult(credential=credential, identity=identity, is_premium=False)

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Authenticate with email and password and issue a new credential.

        Unknown email and wrong password raise the same error after similar work.
        Existing credentials of the identity are left alone.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            StoreUnavailableError: Database failure
        """
        normalized = email.strip().lower()
        identity = await self.identities.find_by_email(normalized)

        if identity is None:
            self.passwords.burn(password)
            metrics.record_auth("login", "invalid_credentials")
            logger.info("login_failed", reason="unknown_email")
            raise InvalidCredentialsError()

        if not self.passwords.verify(identity.password_hash, password):
            metrics.record_auth("login", "invalid_credentials")
            logger.info("login_failed", reason="password_mismatch", identity_id=str(identity.identity_id))
            raise InvalidCredentialsError()

        if self.passwords.needs_rehash(identity.password_hash):
            await self.identities.update_password_hash(
                identity.identity_id, self.passwords.hash(password)
            )

        is_premium = await self.subscriptions.is_premium(identity.identity_id)
        credential = await self._issue(identity, is_premium=is_premium)
        metrics.record_auth("login", "success")
        logger.info("login_succeeded", identity_id=str(identity.identity_id), is_premium=is_premium)
        return AuthResult(credential=credential, identity=identity, is_premium=is_premium)

    async def verify_credential(self, token: str | None) -> UUID:
        """
        Resolve a bearer token to its identity.

        The signature and expiry are checked locally first; the credential store
        must then hold an unrevoked, unexpired row for the token's fingerprint.

        Raises:
            MissingTokenError: No token presented
            MalformedTokenError: Token fails structural or signature checks
            TokenExpiredError: Token is past its expiry
            TokenRevokedError: Token revoked or unknown to the store
            StoreUnavailableError: Database failure
        """
        if not token:
            metrics.record_auth("verify", "missing")
            raise MissingTokenError()

        try:
            claims = self.tokens.parse(token)
        except TokenExpiredError:
            metrics.record_auth("verify", "expired")
            raise
        except MalformedTokenError:
            metrics.record_auth("verify", "malformed")
            raise

        fingerprint = self.tokens.fingerprint(token)
        record = await self.credentials.find_by_fingerprint(fingerprint)

        if record is None or record.revoked:
            metrics.record_auth("verify", "revoked")
            logger.info("credential_rejected", token_hash=fingerprint[:16], reason="revoked_or_unknown")
            raise TokenRevokedError()

        if not record.is_valid_at(datetime.now(UTC)):
            metrics.record_auth("verify", "expired")
            raise TokenExpiredError()

        if record.identity_id != claims.identity_id:
            metrics.record_auth("verify", "malformed")
            logger.warning("credential_identity_mismatch", token_hash=fingerprint[:16])
            raise MalformedTokenError()

        metrics.record_auth("verify", "success")
        return record.identity_id

    async def logout(self, token: str | None) -> None:
        """
        Revoke the presented credential.

        Idempotent: a missing, unknown, expired or already revoked token is not
        an error.
        """
        if not token:
            return
        revoked = await self.credentials.revoke(self.tokens.fingerprint(token))
        metrics.record_auth("logout", "revoked" if revoked else "unknown")

    async def revoke_all(self, identity_id: UUID) -> int:
        """Revoke every credential of an identity. Returns how many were live."""
        return await self.credentials.revoke_all_for_identity(identity_id)

    async def get_account(self, identity_id: UUID) -> tuple[IdentityRecord, bool]:
        """
        Current identity record and freshly resolved premium flag.

        Raises:
            IdentityNotFoundError: No such identity
        """
        identity = await self.identities.find_by_id(identity_id)
        if identity is None:
            raise IdentityNotFoundError(identity_id)
        return identity, await self.subscriptions.is_premium(identity_id)

    async def delete_account(self, identity_id: UUID) -> None:
        """
        Delete an identity after revoking its credentials.

        Usage records and the subscription row go with it by cascade.

        Raises:
            IdentityNotFoundError: No such identity
        """
        await self.credentials.revoke_all_for_identity(identity_id)
        if not await self.identities.delete(identity_id):
            raise IdentityNotFoundError(identity_id)
        logger.info("identity_deleted", identity_id=str(identity_id))

    async def _issue(self, identity: IdentityRecord, is_premium: bool) -> IssuedCredential:
        token, claims = self.tokens.issue(
            identity_id=identity.identity_id,
            email=identity.email,
            is_premium=is_premium,
            ttl=self.token_ttl,
        )
        record = await self.credentials.create(
            identity.identity_id, self.tokens.fingerprint(token), claims.expires_at
        )
        return IssuedCredential(
            token=token,
            credential_id=record.credential_id,
            identity_id=identity.identity_id,
            expires_at=claims.expires_at,
        )

    # ========================================================================
    # Metering
    # ========================================================================

    async def check_entitlement(self, identity_id: UUID, domain: str | None = None) -> UsageSnapshot:
        """
        Decide whether the identity may perform a metered action on a domain.

        Without a domain, reports whether any new domain would be allowed.

        Raises:
            InvalidDomainError: Domain cannot be normalized
            StoreUnavailableError: Database failure
        """
        normalized = normalize_domain(domain) if domain is not None else None

        if await self.subscriptions.is_premium(identity_id):
            metrics.record_entitlement_check("premium")
            # Ledger contents are informational for premium identities
            try:
                domains = await self.usage.domains(identity_id)
            except StoreUnavailableError as e:
                logger.warning(
                    "premium_usage_lookup_failed", identity_id=str(identity_id), error=str(e)
                )
                domains = []
            return UsageSnapshot(
                allowed=True,
                is_premium=True,
                used=len(domains),
                remaining=None,
                limit=None,
                domains=tuple(domains),
                domain_already_used=normalized in domains if normalized else False,
            )

        domains = await self.usage.domains(identity_id)
        used = len(domains)

        already_used = normalized is not None and normalized in domains
        allowed = already_used or used < self.domain_limit

        if already_used:
            metrics.record_entitlement_check("revisit")
        else:
            metrics.record_entitlement_check("allowed" if allowed else "denied")

        return UsageSnapshot(
            allowed=allowed,
            is_premium=False,
            used=used,
            remaining=max(0, self.domain_limit - used),
            limit=self.domain_limit,
            domains=tuple(domains),
            domain_already_used=already_used,
        )

    async def record_usage(
        self, identity_id: UUID, domain: str, resource_url: str | None = None
    ) -> RecordUsageResult:
        """
        Record a metered action on a domain.

        No-op for premium identities and for domains already in the ledger.
        The cap check is a pre-filter; the insert itself is insert-if-absent.
        Once the action has been accepted, a failing insert is logged and
        swallowed rather than failing the request.

        Raises:
            InvalidDomainError: Domain cannot be normalized
            UsageLimitReachedError: New domain and the free tier cap is reached
            StoreUnavailableError: Database failure before the decision was made
        """
        normalized = normalize_domain(domain)
        snapshot = await self.check_entitlement(identity_id, normalized)

        if snapshot.is_premium:
            metrics.record_usage("premium")
            return RecordUsageResult(snapshot=snapshot, recorded=False, already_used=False)

        if snapshot.domain_already_used:
            metrics.record_usage("already_recorded")
            return RecordUsageResult(snapshot=snapshot, recorded=False, already_used=True)

        if not snapshot.allowed:
            # limit is set for every free tier snapshot
            limit = snapshot.limit or 0
            logger.info(
                "usage_limit_reached",
                identity_id=str(identity_id),
                domain=normalized,
                used=snapshot.used,
                limit=limit,
            )
            raise UsageLimitReachedError(used=snapshot.used, remaining=0, limit=limit)

        try:
            inserted = await self.usage.record_if_absent(identity_id, normalized, resource_url)
        except StoreUnavailableError as e:
            metrics.record_usage("failed")
            metrics.record_error("StoreUnavailableError", "record_usage")
            logger.error(
                "usage_record_failed",
                identity_id=str(identity_id),
                domain=normalized,
                error=str(e),
            )
            return RecordUsageResult(snapshot=snapshot, recorded=False, already_used=False)

        if not inserted:
            # Lost a concurrent first-use race for the same domain
            metrics.record_usage("already_recorded")
            logger.info("usage_already_recorded", identity_id=str(identity_id), domain=normalized)
            return RecordUsageResult(
                snapshot=self._with_domain(snapshot, normalized),
                recorded=False,
                already_used=True,
            )

        metrics.record_usage("recorded")
        logger.info("usage_recorded", identity_id=str(identity_id), domain=normalized)
        return RecordUsageResult(
            snapshot=self._with_domain(snapshot, normalized),
            recorded=True,
            already_used=False,
        )

    async def usage_history(self, identity_id: UUID, limit: int = 50) -> list[UsageRecordData]:
        """Most recent usage records, newest first. limit is clamped to [1, 200]."""
        return await self.usage.history(identity_id, max(1, min(limit, MAX_HISTORY_LIMIT)))

    def _with_domain(self, snapshot: UsageSnapshot, domain: str) -> UsageSnapshot:
        """Snapshot after the domain has joined the ledger."""
        if domain in snapshot.domains:
            return snapshot
        used = snapshot.used + 1
        return UsageSnapshot(
            allowed=True,
            is_premium=False,
            used=used,
            remaining=max(0, self.domain_limit - used),
            limit=self.domain_limit,
            domains=(*snapshot.domains, domain),
            domain_already_used=True,
        )
