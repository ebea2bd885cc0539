"""
Usage Ledger - Distinct domains each identity has used.

At most one row per (identity, domain). The unique constraint plus
INSERT ... ON CONFLICT DO NOTHING makes concurrent first use of a domain
resolve to exactly one row.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from kuiqlee.db.errors import store_operation
from kuiqlee.db.models import UsageLog
from kuiqlee.models.domain import UsageRecordData

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class UsageLedger:
    """Reads and writes the usage_logs table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record_if_absent(
        self, identity_id: UUID, domain: str, resource_url: str | None = None
    ) -> bool:
        """
        Insert a (identity, domain) row unless one already exists.

        Returns:
            True if this call inserted the row, False if it already existed
        """
        stmt = (
            insert(UsageLog)
            .values(user_id=identity_id, domain=domain, url=resource_url)
            .on_conflict_do_nothing(constraint="uq_usage_logs_user_domain")
            .returning(UsageLog.id)
        )
        async with store_operation(self.session, "record_usage"):
            result = await self.session.execute(stmt)
            inserted_id = result.scalar_one_or_none()
            await self.session.commit()

        return inserted_id is not None

    async def domains(self, identity_id: UUID) -> list[str]:
        """Distinct domains used, oldest first."""
        async with store_operation(self.session, "list_domains"):
            result = await self.session.execute(
                select(UsageLog.domain)
                .where(UsageLog.user_id == identity_id)
                .order_by(UsageLog.created_at.asc())
            )
            return list(result.scalars().all())

    async def history(
        self, identity_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[UsageRecordData]:
        """Most recent ledger rows first."""
        async with store_operation(self.session, "usage_history"):
            result = await self.session.execute(
                select(UsageLog)
                .where(UsageLog.user_id == identity_id)
                .order_by(UsageLog.created_at.desc())
                .limit(limit)
            )
            rows = result.scalars().all()

        return [
            UsageRecordData(
                record_id=row.id,
                identity_id=row.user_id,
                domain=row.domain,
                resource_url=row.url,
                created_at=row.created_at,
            )
            for row in rows
        ]
