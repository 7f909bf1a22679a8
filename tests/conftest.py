"""Test configuration and fixtures for CartSync."""
import pytest
import pytest_asyncio
from unittest.mock import Mock, AsyncMock

from cartsync.config.settings import SQLITE_PREFIX
from cartsync.db.session import create_engine_for
from cartsync.domain.types import BasketItem, NewPriceEntry, UserProfile
from cartsync.gateway.relational import RelationalGateway
from cartsync.services.basket_session import BasketSession
from cartsync.services.catalog_service import CatalogService
from cartsync.services.connectivity import ConnectivityProbe
from cartsync.services.price_sync import PriceSyncService
from cartsync.storage.cache_store import LocalCacheStore


MEMORY_URL = f"{SQLITE_PREFIX}:memory:"


@pytest_asyncio.fixture
async def memory_gateway():
    """Relational gateway over an in-memory database."""
    gateway = RelationalGateway(create_engine_for(MEMORY_URL))
    await gateway.initialize()
    yield gateway
    await gateway.close()


@pytest_asyncio.fixture
async def memory_cache():
    """Local cache store over an in-memory database."""
    engine = create_engine_for(MEMORY_URL)
    store = LocalCacheStore(engine)
    await store.initialize()
    yield store
    await engine.dispose()


@pytest_asyncio.fixture
async def gateway(tmp_path):
    """Relational gateway over a file database.

    Services run background tasks next to foreground calls, so each
    session needs its own connection.
    """
    gateway = RelationalGateway(create_engine_for(f"{SQLITE_PREFIX}{tmp_path / 'remote.db'}"))
    await gateway.initialize()
    yield gateway
    await gateway.close()


@pytest_asyncio.fixture
async def cache(tmp_path):
    """Local cache store over a file database."""
    engine = create_engine_for(f"{SQLITE_PREFIX}{tmp_path / 'cache.db'}")
    store = LocalCacheStore(engine)
    await store.initialize()
    yield store
    await engine.dispose()


@pytest.fixture
def probe(gateway) -> ConnectivityProbe:
    """Probe against the test gateway."""
    return ConnectivityProbe(gateway, timeout=1.0)


@pytest.fixture
def offline_probe():
    """Probe that always reports the backend as unreachable."""
    mock = Mock(spec=ConnectivityProbe)
    mock.is_reachable = AsyncMock(return_value=False)
    return mock


@pytest_asyncio.fixture
async def catalog_service(cache, gateway, probe):
    """Create a catalog service instance."""
    service = CatalogService(cache, gateway, probe)
    yield service
    await service.wait_for_background()


@pytest_asyncio.fixture
async def price_service(cache, gateway, probe, catalog_service):
    """Create a price sync service instance."""
    service = PriceSyncService(cache, gateway, probe, catalog=catalog_service)
    yield service
    await service.wait_for_background()


@pytest_asyncio.fixture
async def basket(cache, gateway, probe):
    """Create a basket session with no user attached."""
    session = BasketSession(cache, gateway, probe, default_supermarket="Unknown")
    yield session
    await session.wait_for_remote()


@pytest_asyncio.fixture
async def user_basket(basket, user):
    """Basket session with a signed-in user."""
    await basket.attach_user(user.id)
    return basket


@pytest.fixture
def user() -> UserProfile:
    """Create a test user profile."""
    return UserProfile(id="user-1", display_name="Dana")


@pytest.fixture
def milk() -> BasketItem:
    return BasketItem(barcode="111", product_name="Milk", price=5.9, supermarket="Shufersal")


@pytest.fixture
def bread() -> BasketItem:
    return BasketItem(barcode="222", product_name="Bread", price=8.5, supermarket="Shufersal")


@pytest.fixture
def new_price():
    """Factory for submitted price entries."""
    def _make(price: float = 5.9, barcode: str = "111", supermarket: str = "Shufersal", **kwargs):
        return NewPriceEntry(
            product_name=kwargs.pop("product_name", "Milk"),
            price=price,
            barcode=barcode,
            supermarket=supermarket,
            **kwargs
        )
    return _make
