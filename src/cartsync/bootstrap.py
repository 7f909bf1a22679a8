"""Runtime wiring: builds every component once and tears them down together."""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from cartsync.config.settings import CartSyncSettings, get_settings
from cartsync.db.session import create_engine_for, dispose_engine
from cartsync.domain.types import UserProfile
from cartsync.gateway import GatewayError, RemoteGateway, create_gateway
from cartsync.services.basket_session import BasketSession, ReconcileOutcome
from cartsync.services.catalog_service import CatalogService
from cartsync.services.connectivity import ConnectivityProbe
from cartsync.services.price_sync import PriceSyncService, SyncOutcome
from cartsync.storage.cache_store import LocalCacheStore
from cartsync.utils.logger import get_logger

logger = get_logger(__name__)


class CartSyncRuntime:
    """
    Owns the cache store, the gateway and the services for one process.

    The gateway adapter is chosen here from settings and never swapped
    afterwards. Use as an async context manager, or call ``start()`` and
    ``close()`` explicitly.
    """

    def __init__(
        self,
        settings: Optional[CartSyncSettings] = None,
        gateway: Optional[RemoteGateway] = None,
        cache_engine: Optional[AsyncEngine] = None
    ):
        self.settings = settings or get_settings()
        self.gateway = gateway or create_gateway(self.settings)
        self.cache_engine = cache_engine or create_engine_for(self.settings.CACHE_DB_URL)
        self.cache = LocalCacheStore(self.cache_engine)
        self.probe = ConnectivityProbe(self.gateway, timeout=self.settings.PROBE_TIMEOUT)

        self.catalog = CatalogService(self.cache, self.gateway, self.probe)
        self.prices = PriceSyncService(self.cache, self.gateway, self.probe, catalog=self.catalog)
        self.basket = BasketSession(
            self.cache,
            self.gateway,
            self.probe,
            default_supermarket=self.settings.DEFAULT_SUPERMARKET_NAME
        )
        self.last_sync: Optional[SyncOutcome] = None

    async def start(self) -> SyncOutcome:
        """
        Prepare storage, restore the session and run the start-up sync.

        A user profile already on the device resumes its session, which
        triggers basket reconciliation.
        """
        await self.cache.initialize()
        try:
            await self.gateway.initialize()
        except GatewayError as e:
            logger.warning("Remote backend not initialized, running offline", error=e.message)

        await self.basket.restore()
        self.last_sync = await self.prices.sync_local_data()
        logger.info("Start-up sync finished", success=self.last_sync.success, message=self.last_sync.message)

        user = await self.prices.get_local_user()
        if user is not None:
            await self.basket.attach_user(user.id)
        return self.last_sync

    async def sign_in(self, profile: UserProfile) -> ReconcileOutcome:
        """Store the profile on the device and reconcile the basket for it."""
        result = await self.prices.save_local_user(profile)
        if not result.success:
            logger.warning("Could not store user profile locally", user_id=profile.id, error=result.error)
        return await self.basket.attach_user(profile.id)

    async def sign_out(self) -> None:
        """Flush pending basket mirrors, then release the user."""
        await self.basket.wait_for_remote()
        self.basket.detach_user()

    async def close(self) -> None:
        await self.basket.wait_for_remote()
        for service in (self.basket, self.prices, self.catalog):
            await service.shutdown()
        await self.gateway.close()
        await dispose_engine(self.cache_engine)
        logger.info("Runtime closed")

    async def __aenter__(self) -> "CartSyncRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
