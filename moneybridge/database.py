"""
Async SQLAlchemy engine and sessions for the ledger database.

The engine is built lazily from settings so importing models never opens a
connection. Sessions use expire_on_commit=False: services commit mid-flow
(receipt, then auto-confirm) and keep reading the same objects afterwards.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def _build_engine() -> AsyncEngine:
    from moneybridge.config import get_settings
    settings = get_settings()

    options = {"echo": settings.app_env == "development"}
    if not settings.database_url.startswith("sqlite"):
        # SQLite's async pool does not take sizing arguments
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(settings.database_url, **options)


def _sessions() -> async_sessionmaker:
    global _engine, _session_maker
    if _session_maker is None:
        _engine = _build_engine()
        _session_maker = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _session_maker


def async_session_factory() -> AsyncSession:
    """New session for code running outside a request (workers, scripts)."""
    return _sessions()()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Whatever the handler left pending is committed
    when it returns; any exception rolls the session back and propagates.
    """
    async with _sessions()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_maker = None
