"""
Store error translation.

Driver and pool failures surface to callers as StoreUnavailableError so the
API layer can answer 503 without knowing about SQLAlchemy.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from kuiqlee.exceptions import StoreUnavailableError

logger = get_logger(__name__)


@asynccontextmanager
async def store_operation(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Roll back and re-raise database failures as StoreUnavailableError.

    IntegrityError must be caught inside the block by callers that expect it.
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("store_operation_failed", operation=operation, error=str(e))
        await session.rollback()
        raise StoreUnavailableError(operation, str(e)) from e


FOREIGN_KEY_VIOLATION = "23503"


def constraint_violated(error: IntegrityError) -> str | None:
    """Name of the violated constraint, when the driver reports one."""
    orig = error.orig
    for source in (orig, getattr(orig, "__cause__", None)):
        name = getattr(source, "constraint_name", None)
        if name:
            return str(name)
    return None


def is_foreign_key_violation(error: IntegrityError) -> bool:
    orig = error.orig
    for source in (orig, getattr(orig, "__cause__", None)):
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code:
            return str(code) == FOREIGN_KEY_VIOLATION
    return "foreign key" in str(orig).lower()
