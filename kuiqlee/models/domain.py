"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from kuiqlee.models.api import PlanId, SubscriptionStatus


@dataclass(frozen=True)
class IdentityRecord:
    """Stored account identity, including its password hash."""

    identity_id: UUID
    email: str
    password_hash: str
    created_at: datetime

    def __post_init__(self) -> None:
        """Emails are stored case-normalized."""
        if self.email != self.email.lower():
            raise ValueError(f"Email must be lower-cased: {self.email}")


@dataclass(frozen=True)
class CredentialRecord:
    """Stored bearer credential. Holds the fingerprint, never the raw token."""

    credential_id: UUID
    identity_id: UUID
    token_fingerprint: str
    expires_at: datetime
    revoked: bool
    created_at: datetime

    def is_valid_at(self, now: datetime) -> bool:
        """A credential is valid iff it is not revoked and not yet expired."""
        return not self.revoked and now < self.expires_at


@dataclass(frozen=True)
class TokenClaims:
    """
    Claims carried inside a signed bearer token.

    is_premium is a convenience cache from issue time. It is advisory only:
    entitlement decisions always re-read the subscription store.
    """

    identity_id: UUID
    email: str
    is_premium: bool
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedCredential:
    """A freshly issued bearer token. The raw token is only ever returned here."""

    token: str
    credential_id: UUID
    identity_id: UUID
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Outcome of register or login."""

    credential: IssuedCredential
    identity: IdentityRecord
    is_premium: bool


@dataclass(frozen=True)
class UsageRecordData:
    """One usage ledger row."""

    record_id: UUID
    identity_id: UUID
    domain: str
    resource_url: str | None
    created_at: datetime


@dataclass(frozen=True)
class UsageSnapshot:
    """
    Result of an entitlement check.

    remaining and limit are None when the identity is premium (unlimited).
    """

    allowed: bool
    is_premium: bool
    used: int
    remaining: int | None
    limit: int | None
    domains: tuple[str, ...] = field(default_factory=tuple)
    domain_already_used: bool = False

    def __post_init__(self) -> None:
        """Validate snapshot arithmetic."""
        if self.used < 0:
            raise ValueError(f"used cannot be negative: {self.used}")
        if self.is_premium:
            if self.remaining is not None or self.limit is not None:
                raise ValueError("Premium snapshots are unlimited")
        elif self.remaining is None or self.limit is None:
            raise ValueError("Free tier snapshots need remaining and limit")
        elif self.remaining < 0:
            raise ValueError(f"remaining cannot be negative: {self.remaining}")

    @property
    def unlimited(self) -> bool:
        """True when the snapshot carries no cap."""
        return self.is_premium


@dataclass(frozen=True)
class RecordUsageResult:
    """Outcome of recording a metered action."""

    snapshot: UsageSnapshot
    recorded: bool
    already_used: bool


@dataclass(frozen=True)
class SubscriptionData:
    """
    Point-in-time mirror of the payment provider's subscription.

    Every write replaces the whole record.
    """

    identity_id: UUID
    provider_customer_id: str | None
    provider_subscription_id: str | None
    status: SubscriptionStatus
    plan_id: PlanId
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool

    @property
    def is_entitled(self) -> bool:
        """Only the status participates in the entitlement decision."""
        return self.status.is_entitled
