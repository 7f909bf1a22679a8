"""Keeps the local price cache and the remote price store consistent."""
import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Set, TYPE_CHECKING
from pydantic import BaseModel, ValidationError as PydanticValidationError

from cartsync.config.settings import get_settings
from cartsync.domain.types import NewPriceEntry, PriceEntry, UserProfile, generate_id, utc_now_iso
from cartsync.gateway.base import RemoteGateway
from cartsync.gateway.errors import GatewayError
from cartsync.storage.cache_store import CacheKey, LocalCacheStore, StorageError
from .base_service import BaseService, Result
from .connectivity import ConnectivityProbe

if TYPE_CHECKING:
    from .catalog_service import CatalogService


class SyncOutcome(BaseModel):
    """Outcome of a start-up sync; never raised, always returned."""
    success: bool
    message: str
    uploaded_prices: int = 0
    uploaded_user: bool = False


class PriceSyncService(BaseService):
    """Local-first price storage with remote mirroring and sync."""

    def __init__(
        self,
        cache: LocalCacheStore,
        gateway: RemoteGateway,
        probe: ConnectivityProbe,
        catalog: Optional["CatalogService"] = None
    ):
        super().__init__(cache, gateway, probe)
        self.catalog = catalog
        self._prices_lock = asyncio.Lock()

    # --- Local cache helpers ---

    async def _load_local_prices(self) -> List[PriceEntry]:
        """Read the cached price list, degrading to empty on any failure."""
        try:
            rows = await self.cache.get_json(CacheKey.PRICES)
            return [PriceEntry.model_validate(row) for row in rows or []]
        except (StorageError, PydanticValidationError, TypeError) as e:
            self.logger.error("Error getting stored prices", error=str(e))
            return []

    async def _write_local_prices(self, prices: List[PriceEntry]) -> None:
        await self.cache.set_json(CacheKey.PRICES, [p.to_wire() for p in prices])

    async def _overwrite_local_prices(self, remote: List[PriceEntry], known_ids: Set[str]) -> List[PriceEntry]:
        """
        Replace the cached list with the remote one.

        Entries that were not in the cache when the fetch started
        (``known_ids``) and that the remote list lacks were saved meanwhile,
        so they stay in front.
        """
        async with self._prices_lock:
            current = await self._load_local_prices()
            remote_ids = {p.id for p in remote}
            fresh = [p for p in current if p.id not in known_ids and p.id not in remote_ids]
            prices = [*fresh, *remote]
            await self._write_local_prices(prices)
        return prices

    async def _refresh_prices(self, known_ids: Set[str]) -> None:
        """Overwrite the local cache with the authoritative remote list."""
        if not await self.probe.is_reachable():
            return
        prices = await self._overwrite_local_prices(await self.gateway.get_prices(), known_ids)
        self.logger.debug("Price cache refreshed", count=len(prices))

    # --- Read path ---

    async def get_stored_prices(self) -> List[PriceEntry]:
        """
        Return cached prices without waiting on the network.

        A non-empty cache is returned immediately while a background refresh
        runs. An empty cache waits for the remote list when reachable.
        """
        cached = await self._load_local_prices()
        if cached:
            self._spawn(self._refresh_prices({p.id for p in cached}), "Background price refresh")
            return cached

        if not await self.probe.is_reachable():
            return []

        try:
            prices = await self.gateway.get_prices()
        except GatewayError as e:
            self.logger.warning("Initial price fetch failed", error=e.message)
            return []

        try:
            return await self._overwrite_local_prices(prices, set())
        except StorageError as e:
            self.logger.warning("Could not cache fetched prices", error=e.message)
        return prices

    async def get_prices_for_barcode(self, barcode: str) -> List[PriceEntry]:
        """Prices for one product, remote when reachable, otherwise from cache."""
        if await self.probe.is_reachable():
            try:
                return await self.gateway.get_prices(barcode)
            except GatewayError as e:
                self.logger.warning("Remote barcode lookup failed", barcode=barcode, error=e.message)
        return [p for p in await self._load_local_prices() if p.barcode == barcode]

    # --- Write path ---

    async def save_price_entry(self, new_entry: NewPriceEntry) -> Result[PriceEntry]:
        """
        Register a price observation.

        The entry is written to the local cache first, so the user always
        sees it. It is then sent to the remote store when reachable, or left
        queued for the next sync. A remote duplicate is not a failure.

        Args:
            new_entry: The submitted observation without an id

        Returns:
            Result containing the stored entry, with ``metadata['remote']``
            set to ``created``, ``duplicate`` or ``queued``
        """
        entry = new_entry.with_id(generate_id("price"))

        try:
            async with self._prices_lock:
                existing = await self._load_local_prices()
                await self._write_local_prices([entry, *existing])
        except StorageError as e:
            self.logger.exception("Error saving price entry")
            return Result.fail(f"Could not save the price locally: {e.message}")

        if not await self.probe.is_reachable():
            self._log_action("save_price_entry", "queued", price_id=entry.id)
            return Result.ok(entry, remote="queued")

        try:
            created = await self.gateway.add_price(entry)
        except GatewayError as e:
            self.logger.error("Failed to send price to remote store", price_id=entry.id, error=e.message)
            result = Result.from_gateway_error(e)
            result.metadata["price_id"] = entry.id
            result.metadata["saved_locally"] = True
            return result

        remote = "created" if created else "duplicate"
        self._log_action("save_price_entry", remote, price_id=entry.id)
        return Result.ok(entry, remote=remote)

    async def clear_all_prices(self) -> Result[None]:
        """Bulk-clear the local price list."""
        try:
            async with self._prices_lock:
                await self.cache.remove(CacheKey.PRICES)
        except StorageError as e:
            self.logger.error("Error clearing prices", error=e.message)
            return Result.fail(f"Could not clear prices: {e.message}")
        self._log_action("clear_all_prices")
        return Result.ok()

    # --- User profile ---

    async def get_local_user(self) -> Optional[UserProfile]:
        try:
            data = await self.cache.get_json(CacheKey.USER_PROFILE)
            return UserProfile.model_validate(data) if data else None
        except (StorageError, PydanticValidationError) as e:
            self.logger.error("Error getting local user profile", error=str(e))
            return None

    async def save_local_user(self, profile: UserProfile) -> Result[UserProfile]:
        try:
            await self.cache.set_json(CacheKey.USER_PROFILE, profile.to_wire())
        except StorageError as e:
            return Result.fail(f"Could not save the profile: {e.message}")
        return Result.ok(profile)

    # --- Sync ---

    async def sync_local_data(self) -> SyncOutcome:
        """
        Upload queued prices and the local profile. Never raises.

        Batch upload is keyed by id, so entries already on the server are
        left untouched.
        """
        try:
            if not await self.probe.is_reachable():
                return SyncOutcome(
                    success=False,
                    message="Remote backend unreachable; local data kept for the next sync"
                )

            prices = await self._load_local_prices()
            if prices:
                await self.gateway.batch_upload_prices(prices)

            user = await self.get_local_user()
            if user is not None:
                await self.gateway.save_user(user)

            await self.cache.set(CacheKey.SYNCED_AT, utc_now_iso())

            self._log_action("sync_local_data", prices=len(prices), user=user is not None)
            return SyncOutcome(
                success=True,
                message=f"Synced {len(prices)} prices" + (" and user profile" if user else ""),
                uploaded_prices=len(prices),
                uploaded_user=user is not None
            )
        except (GatewayError, StorageError) as e:
            self.logger.error("Sync failed", error=e.message)
            return SyncOutcome(success=False, message=f"Sync failed: {e.message}")
        except Exception as e:
            self.logger.exception("Unexpected sync failure")
            return SyncOutcome(success=False, message=f"Sync failed: {e}")

    async def hydrate_local_cache(self) -> Result[dict]:
        """
        Replace the local price, product and supermarket caches with remote data.

        Returns:
            Result containing the number of records written per cache
        """
        self.logger.info("Starting full hydration")
        try:
            known_ids = {p.id for p in await self._load_local_prices()}
            if self.catalog is not None:
                prices, products, supermarkets = await asyncio.gather(
                    self.gateway.get_prices(),
                    self.catalog.fetch_remote_products(),
                    self.gateway.get_supermarkets(),
                )
            else:
                prices, products, supermarkets = await self.gateway.get_prices(), [], []

            prices = await self._overwrite_local_prices(prices, known_ids)
            if self.catalog is not None:
                await self.catalog.write_local_products(products)
                await self.catalog.write_local_supermarkets(supermarkets)
            await self.cache.set(CacheKey.SYNCED_AT, utc_now_iso())
        except GatewayError as e:
            self.logger.error("Hydration failed", error=e.message)
            return Result.from_gateway_error(e)
        except StorageError as e:
            self.logger.error("Hydration failed", error=e.message)
            return Result.fail(f"Could not update the local cache: {e.message}")

        counts = {
            "prices": len(prices),
            "products": len(products),
            "supermarkets": len(supermarkets),
        }
        self._log_action("hydrate_local_cache", **counts)
        return Result.ok(counts)

    async def get_last_synced_at(self) -> Optional[datetime]:
        try:
            raw = await self.cache.get(CacheKey.SYNCED_AT)
            return datetime.fromisoformat(raw.replace("Z", "+00:00")) if raw else None
        except (StorageError, ValueError) as e:
            self.logger.warning("Could not read sync timestamp", error=str(e))
            return None

    async def is_cache_stale(self, max_age_hours: Optional[float] = None) -> bool:
        """True when never synced, unreadable, or older than the bound."""
        if max_age_hours is None:
            max_age_hours = get_settings().CACHE_MAX_AGE_HOURS
        last_sync = await self.get_last_synced_at()
        if last_sync is None:
            return True
        return self._get_now() - last_sync > timedelta(hours=max_age_hours)
