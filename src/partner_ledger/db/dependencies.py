from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partner_ledger.db.session import get_session_factory


async def get_db_session() -> AsyncIterator[AsyncSession]:
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        finally:
            transaction = session.get_transaction()
            if transaction is not None and transaction.is_active:
                await session.rollback()


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Expose the factory to services that open their own short sessions."""
    return get_session_factory()
