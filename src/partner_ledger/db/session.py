from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from partner_ledger.core.config import DatabaseSettings, Settings, get_settings

_ENGINE: AsyncEngine | None = None
_SESSION_FACTORY: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": database.echo}
    if make_url(database.dsn).get_backend_name() == "sqlite":
        # Concurrent approvals wait on the writer lock instead of failing.
        options["connect_args"] = {"timeout": database.lock_timeout_seconds}
        return options
    options.update(
        pool_pre_ping=True,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
    )
    return options


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        database = (settings or get_settings()).database
        _ENGINE = create_async_engine(database.dsn, **_engine_options(database))
    return _ENGINE


def get_session_factory(
    settings: Settings | None = None,
) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded rows usable after commit; balances are re-read before writes."""
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = async_sessionmaker(
            get_engine(settings), expire_on_commit=False, autoflush=False
        )
    return _SESSION_FACTORY


async def dispose_engine() -> None:
    global _ENGINE, _SESSION_FACTORY
    engine, _ENGINE, _SESSION_FACTORY = _ENGINE, None, None
    if engine is not None:
        await engine.dispose()
