"""Tests for the price synchronization service."""
import asyncio
import re
import pytest
from unittest.mock import Mock, AsyncMock

from cartsync.domain.types import PriceEntry, Product
from cartsync.gateway.errors import ConnectivityError, RemoteRejectionError
from cartsync.services.connectivity import ConnectivityProbe
from cartsync.services.price_sync import PriceSyncService
from cartsync.storage.cache_store import CacheKey, StorageError


@pytest.fixture
def online_probe():
    """Probe that always reports the backend as reachable."""
    mock = Mock(spec=ConnectivityProbe)
    mock.is_reachable = AsyncMock(return_value=True)
    return mock


def cached_entry(price_id: str = "price_cached", price: float = 4.5) -> dict:
    return PriceEntry(
        id=price_id,
        product_name="Cached milk",
        price=price,
        supermarket="Shufersal",
        barcode="111",
    ).to_wire()


@pytest.mark.asyncio
async def test_save_price_entry(price_service, gateway, cache, new_price):
    """Test that a saved price lands locally and remotely."""
    result = await price_service.save_price_entry(new_price())

    assert result.success
    assert result.metadata["remote"] == "created"
    assert re.fullmatch(r"price_\d+_[a-z0-9]{9}", result.data.id)

    local = await cache.get_json(CacheKey.PRICES)
    assert [row["id"] for row in local] == [result.data.id]
    assert [p.id for p in await gateway.get_prices()] == [result.data.id]


@pytest.mark.asyncio
async def test_save_duplicate_price(price_service, gateway, cache, new_price):
    """Test that a repeated price is kept locally but written remotely once."""
    first = await price_service.save_price_entry(new_price(5.9))
    second = await price_service.save_price_entry(new_price(5.9))

    assert second.success
    assert second.metadata["remote"] == "duplicate"

    # Newest first, both visible to the user
    local = await cache.get_json(CacheKey.PRICES)
    assert [row["id"] for row in local] == [second.data.id, first.data.id]
    assert len(await gateway.get_prices("111")) == 1


@pytest.mark.asyncio
async def test_save_changed_price(price_service, gateway, new_price):
    """Test that a new price at the same store is a second remote record."""
    await price_service.save_price_entry(new_price(5.9))
    result = await price_service.save_price_entry(new_price(6.2))

    assert result.metadata["remote"] == "created"
    assert len(await gateway.get_prices("111")) == 2


@pytest.mark.asyncio
async def test_save_price_offline(cache, gateway, offline_probe, new_price):
    """Test that an offline save is queued locally."""
    service = PriceSyncService(cache, gateway, offline_probe)

    result = await service.save_price_entry(new_price())

    assert result.success
    assert result.metadata["remote"] == "queued"
    assert len(await cache.get_json(CacheKey.PRICES)) == 1
    assert await gateway.get_prices() == []


@pytest.mark.asyncio
async def test_concurrent_saves_keep_every_entry(cache, gateway, offline_probe, new_price):
    """Test that overlapping offline submissions are all queued."""
    service = PriceSyncService(cache, gateway, offline_probe)

    first, second = await asyncio.gather(
        service.save_price_entry(new_price(1.0)),
        service.save_price_entry(new_price(2.0, barcode="222")),
    )

    assert first.success and second.success
    local_ids = {row["id"] for row in await cache.get_json(CacheKey.PRICES)}
    assert local_ids == {first.data.id, second.data.id}


@pytest.mark.asyncio
async def test_save_during_refresh_is_kept(cache, online_probe, new_price):
    """Test that a background refresh does not drop a price saved while it was fetching."""
    release = asyncio.Event()
    remote = PriceEntry.model_validate(cached_entry("price_remote", 5.0))

    async def slow_prices(barcode=None):
        await release.wait()
        return [remote]

    gateway = Mock()
    gateway.get_prices = slow_prices
    gateway.add_price = AsyncMock(return_value=True)
    service = PriceSyncService(cache, gateway, online_probe)
    await cache.set_json(CacheKey.PRICES, [cached_entry()])

    await service.get_stored_prices()
    result = await service.save_price_entry(new_price(6.4))
    release.set()
    await service.wait_for_background()

    local_ids = [row["id"] for row in await cache.get_json(CacheKey.PRICES)]
    assert local_ids == [result.data.id, "price_remote"]


@pytest.mark.asyncio
async def test_save_price_remote_rejection(cache, online_probe, new_price):
    """Test that a remote failure reaches the caller while the local copy stays."""
    gateway = Mock()
    gateway.add_price = AsyncMock(side_effect=RemoteRejectionError("Price rejected"))
    service = PriceSyncService(cache, gateway, online_probe)

    result = await service.save_price_entry(new_price())

    assert not result.success
    assert result.error == "Price rejected"
    assert result.metadata["saved_locally"] is True
    assert result.metadata["error_type"] == "RemoteRejectionError"
    assert len(await cache.get_json(CacheKey.PRICES)) == 1


@pytest.mark.asyncio
async def test_save_price_local_failure(gateway, online_probe, new_price):
    """Test that a local write failure is reported as a failure."""
    cache = Mock()
    cache.get_json = AsyncMock(return_value=None)
    cache.set_json = AsyncMock(side_effect=StorageError("disk full", key=CacheKey.PRICES))
    service = PriceSyncService(cache, gateway, online_probe)

    result = await service.save_price_entry(new_price())

    assert not result.success
    assert "disk full" in result.error
    assert await gateway.get_prices() == []


@pytest.mark.asyncio
async def test_stored_prices_return_cache_without_waiting(cache, online_probe):
    """Test that a non-empty cache is returned while the remote hangs."""
    async def hang(barcode=None):
        await asyncio.sleep(10)
        return []

    gateway = Mock()
    gateway.get_prices = hang
    service = PriceSyncService(cache, gateway, online_probe)
    await cache.set_json(CacheKey.PRICES, [cached_entry()])

    prices = await asyncio.wait_for(service.get_stored_prices(), timeout=1)

    assert [p.id for p in prices] == ["price_cached"]
    await service.shutdown()


@pytest.mark.asyncio
async def test_stored_prices_offline(cache, gateway, offline_probe):
    """Test cached and empty reads with no connectivity."""
    service = PriceSyncService(cache, gateway, offline_probe)
    assert await service.get_stored_prices() == []

    await cache.set_json(CacheKey.PRICES, [cached_entry()])
    assert [p.id for p in await service.get_stored_prices()] == ["price_cached"]
    await service.wait_for_background()


@pytest.mark.asyncio
async def test_background_refresh_overwrites_cache(price_service, gateway, cache):
    """Test that a connected read replaces the cache with the remote list."""
    await gateway.batch_upload_prices([PriceEntry.model_validate(cached_entry("price_remote", 5.0))])
    await cache.set_json(CacheKey.PRICES, [cached_entry()])

    prices = await price_service.get_stored_prices()
    assert [p.id for p in prices] == ["price_cached"]

    await price_service.wait_for_background()
    assert [row["id"] for row in await cache.get_json(CacheKey.PRICES)] == ["price_remote"]


@pytest.mark.asyncio
async def test_background_refresh_failure_keeps_cache(cache, online_probe):
    """Test that a failing refresh is swallowed and the stale cache kept."""
    gateway = Mock()
    gateway.get_prices = AsyncMock(side_effect=ConnectivityError("Connection reset"))
    service = PriceSyncService(cache, gateway, online_probe)
    await cache.set_json(CacheKey.PRICES, [cached_entry()])

    assert len(await service.get_stored_prices()) == 1
    await service.wait_for_background()
    assert [row["id"] for row in await cache.get_json(CacheKey.PRICES)] == ["price_cached"]


@pytest.mark.asyncio
async def test_empty_cache_waits_for_remote(price_service, gateway, cache):
    """Test that an empty cache is filled from the remote before returning."""
    await gateway.batch_upload_prices([PriceEntry.model_validate(cached_entry("price_remote"))])

    prices = await price_service.get_stored_prices()

    assert [p.id for p in prices] == ["price_remote"]
    assert len(await cache.get_json(CacheKey.PRICES)) == 1


@pytest.mark.asyncio
async def test_corrupt_cache_reads_empty(cache, gateway, offline_probe):
    """Test that an unreadable price cache degrades to an empty list."""
    await cache.set(CacheKey.PRICES, "not json")
    service = PriceSyncService(cache, gateway, offline_probe)

    assert await service.get_stored_prices() == []


@pytest.mark.asyncio
async def test_prices_for_barcode_offline(cache, gateway, offline_probe):
    """Test barcode lookup falls back to the cache."""
    await cache.set_json(CacheKey.PRICES, [
        cached_entry("price_a"),
        PriceEntry(id="price_b", product_name="Bread", price=8.5, supermarket="Shufersal", barcode="222").to_wire(),
    ])
    service = PriceSyncService(cache, gateway, offline_probe)

    assert [p.id for p in await service.get_prices_for_barcode("222")] == ["price_b"]


@pytest.mark.asyncio
async def test_clear_all_prices(price_service, cache, new_price):
    """Test bulk clearing of the local price list."""
    await price_service.save_price_entry(new_price())

    result = await price_service.clear_all_prices()

    assert result.success
    assert await cache.get(CacheKey.PRICES) is None


@pytest.mark.asyncio
async def test_local_user(price_service, user):
    """Test local profile write and read."""
    assert await price_service.get_local_user() is None

    result = await price_service.save_local_user(user)
    assert result.success
    assert (await price_service.get_local_user()).display_name == "Dana"


@pytest.mark.asyncio
async def test_sync_offline(cache, gateway, offline_probe, new_price):
    """Test that sync without connectivity reports failure without raising."""
    service = PriceSyncService(cache, gateway, offline_probe)
    await service.save_price_entry(new_price())

    outcome = await service.sync_local_data()

    assert outcome.success is False
    assert "unreachable" in outcome.message
    assert await cache.get(CacheKey.SYNCED_AT) is None


@pytest.mark.asyncio
async def test_sync_uploads_queue_and_user(cache, gateway, offline_probe, probe, user, new_price):
    """Test that queued prices and the profile are uploaded once online."""
    offline = PriceSyncService(cache, gateway, offline_probe)
    await offline.save_price_entry(new_price(5.9))
    await offline.save_price_entry(new_price(8.5, barcode="222", product_name="Bread"))
    await offline.save_local_user(user)

    online = PriceSyncService(cache, gateway, probe)
    outcome = await online.sync_local_data()

    assert outcome.success
    assert outcome.uploaded_prices == 2
    assert outcome.uploaded_user
    assert len(await gateway.get_prices()) == 2
    assert (await gateway.get_user(user.id)).display_name == "Dana"
    assert await cache.get(CacheKey.SYNCED_AT) is not None

    # A second sync re-sends the same ids without duplicating them
    assert (await online.sync_local_data()).success
    assert len(await gateway.get_prices()) == 2


@pytest.mark.asyncio
async def test_sync_gateway_failure(cache, online_probe, new_price):
    """Test that an upload failure is reported in the outcome."""
    gateway = Mock()
    gateway.batch_upload_prices = AsyncMock(side_effect=ConnectivityError("Connection reset"))
    service = PriceSyncService(cache, gateway, online_probe)
    await cache.set_json(CacheKey.PRICES, [cached_entry()])

    outcome = await service.sync_local_data()

    assert outcome.success is False
    assert "Connection reset" in outcome.message


@pytest.mark.asyncio
async def test_hydrate_local_cache(price_service, gateway, cache):
    """Test that hydration overwrites prices, products and supermarkets."""
    await gateway.batch_upload_prices([PriceEntry.model_validate(cached_entry("price_remote"))])
    await gateway.save_product(Product(barcode="111", name="Milk 3%"))
    await gateway.add_supermarket("Shufersal")
    await cache.set_json(CacheKey.PRICES, [cached_entry("price_old")])

    result = await price_service.hydrate_local_cache()

    assert result.success
    assert result.data == {"prices": 1, "products": 1, "supermarkets": 1}
    assert [row["id"] for row in await cache.get_json(CacheKey.PRICES)] == ["price_remote"]
    assert (await cache.get_json(CacheKey.PRODUCTS))[0]["name"] == "Milk 3%"
    assert (await cache.get_json(CacheKey.SUPERMARKETS))[0]["name"] == "Shufersal"


@pytest.mark.asyncio
async def test_cache_staleness(price_service, cache):
    """Test staleness before a sync, right after, and with an old timestamp."""
    assert await price_service.is_cache_stale() is True

    await price_service.sync_local_data()
    assert await price_service.is_cache_stale() is False

    await cache.set(CacheKey.SYNCED_AT, "2020-01-01T00:00:00.000Z")
    assert await price_service.is_cache_stale(max_age_hours=24) is True

    await cache.set(CacheKey.SYNCED_AT, "garbage")
    assert await price_service.is_cache_stale() is True
