"""
Store Protocols - What the services need from persistence.

The SQLAlchemy-backed stores implement these; tests substitute in-memory fakes.
"""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from kuiqlee.models.domain import (
    CredentialRecord,
    IdentityRecord,
    SubscriptionData,
    UsageRecordData,
)


class IdentityRepository(Protocol):
    async def create(self, email: str, password_hash: str) -> IdentityRecord: ...

    async def find_by_email(self, email: str) -> IdentityRecord | None: ...

    async def find_by_id(self, identity_id: UUID) -> IdentityRecord | None: ...

    async def update_password_hash(self, identity_id: UUID, password_hash: str) -> None: ...

    async def delete(self, identity_id: UUID) -> bool: ...


class CredentialRepository(Protocol):
    async def create(
        self, identity_id: UUID, token_fingerprint: str, expires_at: datetime
    ) -> CredentialRecord: ...

    async def find_by_fingerprint(self, token_fingerprint: str) -> CredentialRecord | None: ...

    async def revoke(self, token_fingerprint: str) -> bool: ...

    async def revoke_all_for_identity(self, identity_id: UUID) -> int: ...


class UsageRepository(Protocol):
    async def record_if_absent(
        self, identity_id: UUID, domain: str, resource_url: str | None = None
    ) -> bool: ...

    async def domains(self, identity_id: UUID) -> list[str]: ...

    async def history(self, identity_id: UUID, limit: int = 50) -> list[UsageRecordData]: ...


class SubscriptionRepository(Protocol):
    async def upsert(self, subscription: SubscriptionData) -> None: ...

    async def get_by_identity(self, identity_id: UUID) -> SubscriptionData | None: ...

    async def is_premium(self, identity_id: UUID) -> bool: ...

    async def get_by_provider_subscription_id(
        self, provider_subscription_id: str
    ) -> SubscriptionData | None: ...
