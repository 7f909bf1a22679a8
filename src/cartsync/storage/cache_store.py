"""Durable key-value cache for device-local state."""
import json
from typing import Any, Iterable, Optional
from sqlalchemy import String, Text, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cartsync.db.session import TransactionManager, create_session_factory
from cartsync.utils.logger import get_logger


class CacheKey:
    """Logical key space, partitioned by purpose."""
    PRICES = "cartsync_prices"
    USER_PROFILE = "cartsync_user_profile"
    SYNCED_AT = "cartsync_synced_at"
    PRODUCTS = "cartsync_products"
    SUPERMARKETS = "cartsync_supermarkets"
    SELECTED_SUPERMARKET = "cartsync_selected_supermarket"
    SHOP_MODE = "cartsync_shop_mode"
    BASKET = "cartsync_basket"


class StorageError(Exception):
    """A local storage read or write failed."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.message = message
        self.key = key
        super().__init__(message)


class LocalBase(DeclarativeBase):
    """Declarative base for the device-local database."""
    pass


class CacheEntry(LocalBase):
    """A serialized value stored under a key."""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<CacheEntry(key='{self.key}')>"


class LocalCacheStore:
    """Async key-value store persisted in a local SQL database.

    Every operation may raise ``StorageError``; callers decide whether to
    degrade to a default or propagate.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.transaction = TransactionManager(create_session_factory(engine))
        self.logger = get_logger(self.__class__.__name__)

    async def initialize(self) -> None:
        """Create the backing table if needed."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(LocalBase.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize local cache: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self.transaction.transaction(auto_commit=False) as session:
                entry = await session.get(CacheEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read '{key}': {e}", key=key) from e

    async def set(self, key: str, value: str) -> None:
        """Insert or overwrite a key in a single statement."""
        statement = sqlite_insert(CacheEntry).values(key=key, value=value)
        statement = statement.on_conflict_do_update(
            index_elements=[CacheEntry.key],
            set_={"value": statement.excluded.value}
        )
        try:
            async with self.transaction.transaction() as session:
                await session.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write '{key}': {e}", key=key) from e

    async def remove(self, key: str) -> None:
        await self.remove_many([key])

    async def remove_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            async with self.transaction.transaction() as session:
                await session.execute(delete(CacheEntry).where(CacheEntry.key.in_(keys)))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to remove {', '.join(keys)}: {e}") from e

    async def keys(self) -> list[str]:
        try:
            async with self.transaction.transaction(auto_commit=False) as session:
                result = await session.execute(select(CacheEntry.key).order_by(CacheEntry.key))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list keys: {e}") from e

    async def get_json(self, key: str) -> Any:
        """Read and decode a JSON value; absent keys yield None."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt value under '{key}'", key=key) from e

    async def set_json(self, key: str, value: Any) -> None:
        await self.set(key, json.dumps(value))
