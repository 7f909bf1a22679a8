"""Uniform interface over the interchangeable remote backends."""
from abc import ABC, abstractmethod
from typing import List, Optional

from cartsync.domain.types import (
    BasketItem,
    PriceEntry,
    Product,
    SavedBasket,
    SavedBasketItem,
    Supermarket,
    UserProfile,
)
from cartsync.utils.logger import get_logger


class RemoteGateway(ABC):
    """
    CRUD surface shared by every backend adapter.

    All mutating operations act on the remote store only; keeping the local
    cache in step is the caller's job. Every operation may raise a
    ``GatewayError`` subclass.
    """

    name: str = "remote"

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    async def initialize(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release network or database resources."""

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap reachability check. May raise on transport failure."""

    # --- Prices ---

    @abstractmethod
    async def get_prices(self, barcode: Optional[str] = None) -> List[PriceEntry]:
        """Price entries, newest first, optionally for one barcode."""

    @abstractmethod
    async def add_price(self, entry: PriceEntry) -> bool:
        """Insert one entry. Returns False when the write was skipped."""

    @abstractmethod
    async def batch_upload_prices(self, entries: List[PriceEntry]) -> None:
        """Upsert entries keyed by id; re-uploading an id is a no-op."""

    async def get_prices_by_supermarket(self, supermarket: str) -> List[PriceEntry]:
        """Prices recorded at one supermarket, ordered by product name."""
        prices = await self.get_prices()
        matching = [p for p in prices if p.supermarket == supermarket]
        return sorted(matching, key=lambda p: p.product_name.lower())

    # --- Users ---

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def save_user(self, profile: UserProfile) -> None:
        ...

    # --- Products ---

    @abstractmethod
    async def get_product(self, barcode: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def save_product(self, product: Product) -> None:
        ...

    @abstractmethod
    async def list_products(self) -> List[Product]:
        ...

    # --- Supermarkets ---

    @abstractmethod
    async def get_supermarkets(self) -> List[Supermarket]:
        """All supermarkets ordered by name."""

    @abstractmethod
    async def add_supermarket(self, name: str) -> Supermarket:
        """Create a supermarket. Raises ``ConflictError`` on a duplicate name."""

    # --- Live basket mirror ---

    @abstractmethod
    async def get_user_basket(self, user_id: str) -> List[BasketItem]:
        ...

    @abstractmethod
    async def upsert_basket_item(self, user_id: str, item: BasketItem) -> None:
        ...

    @abstractmethod
    async def delete_basket_item(self, user_id: str, item_id: str) -> None:
        ...

    @abstractmethod
    async def clear_user_basket(self, user_id: str) -> None:
        ...

    # --- Saved baskets ---

    @abstractmethod
    async def create_named_basket(
        self,
        user_id: str,
        name: str,
        supermarket: str,
        total_amount: float,
        items: List[SavedBasketItem]
    ) -> SavedBasket:
        ...

    @abstractmethod
    async def update_named_basket(
        self,
        user_id: str,
        basket_id: str,
        total_amount: float,
        items: List[SavedBasketItem]
    ) -> None:
        ...

    @abstractmethod
    async def delete_named_basket(self, user_id: str, basket_id: str) -> None:
        ...

    @abstractmethod
    async def rename_named_basket(self, user_id: str, basket_id: str, new_name: str) -> None:
        ...

    @abstractmethod
    async def list_named_baskets(self, user_id: str) -> List[SavedBasket]:
        """Saved baskets of a user, newest first."""

    @abstractmethod
    async def get_named_basket_items(self, basket_id: str) -> List[SavedBasketItem]:
        ...
