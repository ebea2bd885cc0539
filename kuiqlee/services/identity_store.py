"""
Identity Store - Account rows keyed by lower-cased email.
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from kuiqlee.db.errors import store_operation
from kuiqlee.db.models import User
from kuiqlee.exceptions import EmailAlreadyRegisteredError
from kuiqlee.models.domain import IdentityRecord

logger = get_logger(__name__)


class IdentityStore:
    """Reads and writes the users table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, email: str, password_hash: str) -> IdentityRecord:
        """
        Insert a new identity.

        Raises:
            EmailAlreadyRegisteredError: Email is taken (including a concurrent insert)
            StoreUnavailableError: Database failure
        """
        user = User(email=email, password_hash=password_hash)
        async with store_operation(self.session, "create_identity"):
            self.session.add(user)
            try:
                await self.session.flush()
            except IntegrityError:
                await self.session.rollback()
                raise EmailAlreadyRegisteredError(email) from None
            await self.session.commit()

        logger.info("identity_created", identity_id=str(user.id))
        return self._to_domain(user)

    async def find_by_email(self, email: str) -> IdentityRecord | None:
        async with store_operation(self.session, "find_identity_by_email"):
            result = await self.session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
        return self._to_domain(user) if user else None

    async def find_by_id(self, identity_id: UUID) -> IdentityRecord | None:
        async with store_operation(self.session, "find_identity_by_id"):
            user = await self.session.get(User, identity_id)
        return self._to_domain(user) if user else None

    async def update_password_hash(self, identity_id: UUID, password_hash: str) -> None:
        """Replace a stored hash, used when hashing parameters are raised."""
        async with store_operation(self.session, "update_password_hash"):
            user = await self.session.get(User, identity_id)
            if user is None:
                return
            user.password_hash = password_hash
            await self.session.commit()

    async def delete(self, identity_id: UUID) -> bool:
        """
        Delete an identity. Credentials, usage and subscription rows cascade.

        Returns:
            True if a row was deleted
        """
        async with store_operation(self.session, "delete_identity"):
            result = await self.session.execute(delete(User).where(User.id == identity_id))
            await self.session.commit()
        return bool(result.rowcount)

    @staticmethod
    def _to_domain(user: User) -> IdentityRecord:
        return IdentityRecord(
            identity_id=user.id,
            email=user.email,
            password_hash=user.password_hash,
            created_at=user.created_at,
        )
