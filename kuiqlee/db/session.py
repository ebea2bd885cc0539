"""
Database Session Management - Async SQLAlchemy session factory.

Engines are created lazily on first use and disposed on shutdown. Writes go to
the primary; reads may go to a replica when DATABASE_READ_URL is set.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from kuiqlee.config import settings

_engines: dict[str, AsyncEngine] = {}
_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}

WRITE = "write"
READ = "read"


def _build_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
    )


def get_engine(role: str = WRITE) -> AsyncEngine:
    """Get or create the engine for the given role ("write" or "read")."""
    if role not in _engines:
        url = settings.database_url if role == WRITE else settings.read_database_url
        _engines[role] = _build_engine(url)
    return _engines[role]


def get_session_factory(role: str = WRITE) -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory for the given role."""
    if role not in _session_factories:
        _session_factories[role] = async_sessionmaker(
            get_engine(role),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factories[role]


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for write database session.

    Usage:
        @router.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_write_db)):
            ...
    """
    async with get_session_factory(WRITE)() as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for read database session (replica when configured)."""
    async with get_session_factory(READ)() as session:
        yield session


async def close_engines() -> None:
    """Close all database engines (for graceful shutdown)."""
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()
    _session_factories.clear()
