"""
Credential Store - Issued bearer tokens, by fingerprint.

SECURITY: Only SHA-256 fingerprints are stored, never raw tokens.
Revocation only ever flips `revoked` to true; rows are never un-revoked.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from kuiqlee.db.errors import store_operation
from kuiqlee.db.models import AuthToken
from kuiqlee.exceptions import IdentityNotFoundError
from kuiqlee.models.domain import CredentialRecord

logger = get_logger(__name__)


class CredentialStore:
    """Reads and writes the auth_tokens table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self, identity_id: UUID, token_fingerprint: str, expires_at: datetime
    ) -> CredentialRecord:
        """
        Persist a newly issued credential.

        Raises:
            IdentityNotFoundError: The identity vanished before the insert
            StoreUnavailableError: Database failure
        """
        token = AuthToken(
            user_id=identity_id,
            token_hash=token_fingerprint,
            expires_at=expires_at,
            revoked=False,
        )
        async with store_operation(self.session, "create_credential"):
            self.session.add(token)
            try:
                await self.session.flush()
            except IntegrityError:
                await self.session.rollback()
                raise IdentityNotFoundError(identity_id) from None
            await self.session.commit()

        logger.info(
            "credential_issued",
            identity_id=str(identity_id),
            token_hash=token_fingerprint[:16],
        )
        return self._to_domain(token)

    async def find_by_fingerprint(self, token_fingerprint: str) -> CredentialRecord | None:
        async with store_operation(self.session, "find_credential"):
            result = await self.session.execute(
                select(AuthToken).where(AuthToken.token_hash == token_fingerprint)
            )
            token = result.scalars().first()
        return self._to_domain(token) if token else None

    async def revoke(self, token_fingerprint: str) -> bool:
        """
        Mark a credential revoked. Revoking twice is harmless.

        Returns:
            True if a row matched the fingerprint
        """
        async with store_operation(self.session, "revoke_credential"):
            result = await self.session.execute(
                update(AuthToken)
                .where(AuthToken.token_hash == token_fingerprint)
                .values(revoked=True)
            )
            await self.session.commit()

        matched = bool(result.rowcount)
        if matched:
            logger.info("credential_revoked", token_hash=token_fingerprint[:16])
        return matched

    async def revoke_all_for_identity(self, identity_id: UUID) -> int:
        """Revoke every live credential of an identity. Returns the number revoked."""
        async with store_operation(self.session, "revoke_all_credentials"):
            result = await self.session.execute(
                update(AuthToken)
                .where(AuthToken.user_id == identity_id, AuthToken.revoked.is_(False))
                .values(revoked=True)
            )
            await self.session.commit()

        count = int(result.rowcount or 0)
        logger.info("credentials_revoked_for_identity", identity_id=str(identity_id), count=count)
        return count

    async def count_expired(self, now: datetime | None = None) -> int:
        cutoff = now or datetime.now(UTC)
        async with store_operation(self.session, "count_expired_credentials"):
            result = await self.session.execute(
                select(func.count())
                .select_from(AuthToken)
                .where(AuthToken.expires_at <= cutoff)
            )
            return int(result.scalar_one())

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Delete credentials past their expiry. They can never authenticate again.

        Returns:
            Number of rows deleted
        """
        cutoff = now or datetime.now(UTC)
        async with store_operation(self.session, "sweep_expired_credentials"):
            result = await self.session.execute(
                delete(AuthToken).where(AuthToken.expires_at <= cutoff)
            )
            await self.session.commit()

        count = int(result.rowcount or 0)
        logger.info("expired_credentials_swept", count=count)
        return count

    @staticmethod
    def _to_domain(token: AuthToken) -> CredentialRecord:
        return CredentialRecord(
            credential_id=token.id,
            identity_id=token.user_id,
            token_fingerprint=token.token_hash,
            expires_at=token.expires_at,
            revoked=token.revoked,
            created_at=token.created_at,
        )
