"""Product and supermarket catalog with local-first reads."""
import math
from typing import Dict, List, Optional
from pydantic import ValidationError as PydanticValidationError

from cartsync.domain.types import PriceEntry, Product, Supermarket
from cartsync.gateway.errors import ConflictError, GatewayError, UnsupportedOperationError
from cartsync.storage.cache_store import CacheKey, StorageError
from .base_service import BaseService, Result


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def build_product_catalog(prices: List[PriceEntry], products: List[Product]) -> List[Product]:
    """
    Merge product records over the cheapest known price per product.

    Products are keyed by barcode, falling back to name. Fields of a product
    record win over those derived from prices.
    """
    catalog: Dict[str, Product] = {}

    for entry in sorted(prices, key=lambda p: p.price):
        key = entry.product_key or "unknown"
        if key not in catalog:
            catalog[key] = Product(
                barcode=entry.barcode or "",
                name=entry.product_name,
                brand=entry.brand,
                image_url=entry.image_url,
                created_at=entry.timestamp,
                best_price=entry.price,
                supermarket=entry.supermarket,
            )

    for product in products:
        key = product.barcode or product.name or "unknown"
        existing = catalog.get(key)
        if existing is None:
            catalog[key] = product
            continue
        merged = existing.model_dump()
        merged.update(product.model_dump(exclude_none=True))
        merged["barcode"] = product.barcode or existing.barcode
        catalog[key] = Product(**merged)

    return sorted(catalog.values(), key=lambda p: p.name.lower())


class CatalogService(BaseService):
    """Supermarkets and products, served from cache and refreshed in the background."""

    # --- Supermarkets ---

    async def _load_local_supermarkets(self) -> List[Supermarket]:
        try:
            rows = await self.cache.get_json(CacheKey.SUPERMARKETS)
            return [Supermarket.model_validate(row) for row in rows or []]
        except (StorageError, PydanticValidationError, TypeError) as e:
            self.logger.error("Error getting local supermarkets", error=str(e))
            return []

    async def write_local_supermarkets(self, supermarkets: List[Supermarket]) -> None:
        await self.cache.set_json(CacheKey.SUPERMARKETS, [s.to_wire() for s in supermarkets])

    async def _refresh_supermarkets(self) -> None:
        if not await self.probe.is_reachable():
            return
        await self.write_local_supermarkets(await self.gateway.get_supermarkets())

    async def get_supermarkets(self) -> List[Supermarket]:
        cached = await self._load_local_supermarkets()
        if cached:
            self._spawn(self._refresh_supermarkets(), "Background supermarket refresh")
            return cached

        if not await self.probe.is_reachable():
            return []
        try:
            supermarkets = await self.gateway.get_supermarkets()
            await self.write_local_supermarkets(supermarkets)
        except (GatewayError, StorageError) as e:
            self.logger.warning("Initial supermarket fetch failed", error=e.message)
            return await self._load_local_supermarkets()
        return supermarkets

    async def add_supermarket(self, name: str) -> Result[Supermarket]:
        """
        Register a new supermarket by name.

        Args:
            name: Display name; must be unique

        Returns:
            Result containing the created supermarket or error
        """
        name = (name or "").strip()
        if not name:
            return Result.fail("Supermarket name cannot be empty")

        try:
            created = await self.gateway.add_supermarket(name)
        except ConflictError as e:
            self.logger.debug("Duplicate supermarket", name=name)
            return Result.fail(
                f"Supermarket '{name}' already exists",
                suggestions=["Pick it from the list instead"],
                error_type=e.__class__.__name__
            )
        except GatewayError as e:
            self.logger.error("Failed to add supermarket", name=name, error=e.message)
            return Result.from_gateway_error(e)

        cached = await self._load_local_supermarkets()
        try:
            await self.write_local_supermarkets(
                sorted([*cached, created], key=lambda s: s.name.lower())
            )
        except StorageError as e:
            self.logger.warning("Could not cache new supermarket", error=e.message)

        self._log_action("add_supermarket", name=name, supermarket_id=created.id)
        return Result.ok(created)

    async def nearest_supermarket(self, latitude: float, longitude: float) -> Optional[Supermarket]:
        """Closest known supermarket with coordinates, if any."""
        candidates = [s for s in await self.get_supermarkets() if s.has_coordinates]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda s: haversine_km(latitude, longitude, s.latitude, s.longitude)
        )

    async def get_products_by_supermarket(self, supermarket: str) -> List[PriceEntry]:
        """Prices recorded at a supermarket, or an empty list when unavailable."""
        if not await self.probe.is_reachable():
            return []
        try:
            return await self.gateway.get_prices_by_supermarket(supermarket)
        except GatewayError as e:
            self.logger.error("Error fetching supermarket products", supermarket=supermarket, error=e.message)
            return []

    # --- Products ---

    async def _load_local_products(self) -> List[Product]:
        try:
            rows = await self.cache.get_json(CacheKey.PRODUCTS)
            return [Product.model_validate(row) for row in rows or []]
        except (StorageError, PydanticValidationError, TypeError) as e:
            self.logger.error("Error getting local products", error=str(e))
            return []

    async def write_local_products(self, products: List[Product]) -> None:
        await self.cache.set_json(CacheKey.PRODUCTS, [p.to_wire() for p in products])

    async def fetch_remote_products(self) -> List[Product]:
        """Build the product catalog from remote prices and product records."""
        prices = await self.gateway.get_prices()
        try:
            products = await self.gateway.list_products()
        except UnsupportedOperationError:
            products = []
        return build_product_catalog(prices, products)

    async def _refresh_products(self) -> None:
        if not await self.probe.is_reachable():
            return
        await self.write_local_products(await self.fetch_remote_products())

    async def get_products(self) -> List[Product]:
        cached = await self._load_local_products()
        if cached:
            self._spawn(self._refresh_products(), "Background product refresh")
            return cached

        if not await self.probe.is_reachable():
            return []
        try:
            products = await self.fetch_remote_products()
            await self.write_local_products(products)
        except (GatewayError, StorageError) as e:
            self.logger.warning("Initial product fetch failed", error=e.message)
            return await self._load_local_products()
        return products

    async def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        """Remote lookup, falling back to the local catalog."""
        if await self.probe.is_reachable():
            try:
                product = await self.gateway.get_product(barcode)
                if product is not None:
                    return product
            except GatewayError as e:
                self.logger.warning("Remote product lookup failed", barcode=barcode, error=e.message)

        for product in await self._load_local_products():
            if product.barcode == barcode:
                return product
        return None

    async def save_product(self, product: Product) -> Result[Product]:
        try:
            await self.gateway.save_product(product)
        except GatewayError as e:
            self.logger.error("Failed to save product", barcode=product.barcode, error=e.message)
            return Result.from_gateway_error(e)
        self._log_action("save_product", barcode=product.barcode)
        return Result.ok(product)
