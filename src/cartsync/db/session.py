"""Database session management for CartSync."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    In-memory SQLite databases share a single connection so every session
    sees the same tables.
    """
    kwargs = {"echo": echo}
    if url.startswith("sqlite") and ":memory:" in url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}

    engine = create_async_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


class TransactionManager:
    """Opens short-lived sessions with commit/rollback handling."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self, *, auto_commit: bool = True) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database transactions.

        Args:
            auto_commit: Whether to automatically commit on success

        Yields:
            AsyncSession: A fresh database session

        Raises:
            Exception: Any exception that occurs during the transaction
        """
        async with self.session_factory() as session:
            try:
                yield session
                if auto_commit:
                    await session.commit()
            except Exception:
                await session.rollback()
                raise


async def dispose_engine(engine: Optional[AsyncEngine]) -> None:
    """Release all pooled connections of an engine."""
    if engine is not None:
        await engine.dispose()
