"""Adapter for the legacy JSON-over-HTTP backend."""
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from cartsync.domain.types import (
    BasketItem,
    PriceEntry,
    Product,
    SavedBasket,
    SavedBasketItem,
    Supermarket,
    UserProfile,
)
from .base import RemoteGateway
from .errors import (
    ConflictError,
    ConnectivityError,
    GatewayError,
    NotFoundError,
    RemoteRejectionError,
    UnsupportedOperationError,
)


DEFAULT_HEADERS = {"Bypass-Tunnel-Reminder": "true"}


def _price_from_row(row: dict) -> PriceEntry:
    """Rebuild the nested location from flattened columns when needed."""
    row = dict(row)
    latitude = row.pop("latitude", None)
    longitude = row.pop("longitude", None)
    address = row.pop("address", None)
    if "location" not in row and latitude is not None and longitude is not None:
        row["location"] = {"latitude": latitude, "longitude": longitude, "address": address}
    return PriceEntry.model_validate(row)


def _user_from_row(row: dict) -> UserProfile:
    row = dict(row)
    if "stats" not in row:
        row["stats"] = {
            "pricesShared": row.pop("pricesShared", 0) or 0,
            "totalSavings": row.pop("totalSavings", 0) or 0,
        }
    return UserProfile.model_validate(row)


class RestGateway(RemoteGateway):
    """Talks to the legacy REST service.

    The service has no basket endpoints, so basket operations raise
    ``UnsupportedOperationError``.
    """

    name = "rest"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=DEFAULT_HEADERS,
            timeout=timeout,
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and map transport and status failures to gateway errors."""
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"{method} {path} timed out") from e
        except httpx.RequestError as e:
            raise ConnectivityError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(
                f"{method} {path}: not found",
                metadata={"status": 404}
            )
        if response.status_code == 409:
            raise ConflictError(
                self._error_message(response, "Record already exists"),
                metadata={"status": 409}
            )
        if 400 <= response.status_code < 500:
            raise RemoteRejectionError(
                self._error_message(response, f"Request rejected ({response.status_code})"),
                metadata={"status": response.status_code}
            )
        if response.is_error:
            raise GatewayError(
                f"{method} {path} failed: {response.status_code} {response.text[:100]}",
                metadata={"status": response.status_code}
            )
        return response

    @staticmethod
    def _error_message(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict) and body.get("error"):
            return body["error"]
        return default

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(
                f"Invalid JSON response from server: {response.text[:100]}"
            ) from e

    async def ping(self) -> bool:
        response = await self._request("GET", "/health")
        try:
            body = response.json()
        except ValueError:
            self.logger.debug("Health response was not JSON", body=response.text[:100])
            return False
        return isinstance(body, dict) and body.get("status") == "ok"

    # --- Prices ---

    async def get_prices(self, barcode: Optional[str] = None) -> List[PriceEntry]:
        params = {"barcode": barcode} if barcode else None
        rows = self._json(await self._request("GET", "/prices", params=params))
        try:
            return [_price_from_row(row) for row in rows]
        except PydanticValidationError as e:
            raise GatewayError(f"Malformed price record: {e}") from e

    async def add_price(self, entry: PriceEntry) -> bool:
        await self._request("POST", "/prices", json=entry.to_wire())
        return True

    async def batch_upload_prices(self, entries: List[PriceEntry]) -> None:
        await self._request("POST", "/prices/batch", json=[e.to_wire() for e in entries])

    # --- Users ---

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        try:
            response = await self._request("GET", f"/users/{user_id}")
        except NotFoundError:
            return None
        return _user_from_row(self._json(response))

    async def save_user(self, profile: UserProfile) -> None:
        await self._request("POST", "/users", json=profile.to_wire())

    # --- Products ---

    async def get_product(self, barcode: str) -> Optional[Product]:
        try:
            response = await self._request("GET", f"/products/{barcode}")
        except NotFoundError:
            return None
        return Product.model_validate(self._json(response))

    async def save_product(self, product: Product) -> None:
        await self._request("POST", "/products", json=product.to_wire())

    async def list_products(self) -> List[Product]:
        raise UnsupportedOperationError("The REST backend cannot list products")

    # --- Supermarkets ---

    async def get_supermarkets(self) -> List[Supermarket]:
        rows = self._json(await self._request("GET", "/supermarkets"))
        return [Supermarket.model_validate(row) for row in rows]

    async def add_supermarket(self, name: str) -> Supermarket:
        response = await self._request("POST", "/supermarkets", json={"name": name})
        return Supermarket.model_validate(self._json(response))

    # --- Baskets ---

    def _unsupported(self, operation: str):
        return UnsupportedOperationError(
            f"The REST backend does not support {operation}",
            suggestions=["Switch CARTSYNC_BACKEND to 'relational' to sync baskets"]
        )

    async def get_user_basket(self, user_id: str) -> List[BasketItem]:
        raise self._unsupported("basket sync")

    async def upsert_basket_item(self, user_id: str, item: BasketItem) -> None:
        raise self._unsupported("basket sync")

    async def delete_basket_item(self, user_id: str, item_id: str) -> None:
        raise self._unsupported("basket sync")

    async def clear_user_basket(self, user_id: str) -> None:
        raise self._unsupported("basket sync")

    async def create_named_basket(
        self,
        user_id: str,
        name: str,
        supermarket: str,
        total_amount: float,
        items: List[SavedBasketItem]
    ) -> SavedBasket:
        raise self._unsupported("saved baskets")

    async def update_named_basket(
        self,
        user_id: str,
        basket_id: str,
        total_amount: float,
        items: List[SavedBasketItem]
    ) -> None:
        raise self._unsupported("saved baskets")

    async def delete_named_basket(self, user_id: str, basket_id: str) -> None:
        raise self._unsupported("saved baskets")

    async def rename_named_basket(self, user_id: str, basket_id: str, new_name: str) -> None:
        raise self._unsupported("saved baskets")

    async def list_named_baskets(self, user_id: str) -> List[SavedBasket]:
        raise self._unsupported("saved baskets")

    async def get_named_basket_items(self, basket_id: str) -> List[SavedBasketItem]:
        raise self._unsupported("saved baskets")
