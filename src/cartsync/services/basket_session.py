"""The live shopping basket and its saved-basket lifecycle."""
import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional
from pydantic import ValidationError as PydanticValidationError

from cartsync.config.settings import get_settings
from cartsync.domain.types import (
    BasketItem,
    SavedBasket,
    SavedBasketItem,
    generate_id,
    utc_now_iso,
)
from cartsync.gateway.base import RemoteGateway
from cartsync.gateway.errors import GatewayError
from cartsync.storage.cache_store import CacheKey, LocalCacheStore, StorageError
from .base_service import BaseService, Result
from .connectivity import ConnectivityProbe


class BasketState(str, Enum):
    EMPTY = "empty"
    ACTIVE = "active"
    LOADED_FROM_SAVED = "loaded_from_saved"


class ReconcileOutcome(str, Enum):
    """Which side won when a user was attached."""
    REMOTE_WINS = "remote_wins"
    LOCAL_UPLOADED = "local_uploaded"
    NOTHING_TO_DO = "nothing_to_do"
    SKIPPED = "skipped"


class BasketSession(BaseService):
    """
    Owns the one live basket of this device.

    State lives in three tiers: memory (what callers read), the local cache
    (survives restarts) and the remote per-item mirror (survives device loss,
    only while a user is attached).

    Every mutation updates memory before its first suspension point and
    writes the local cache before returning. The remote mirror receives the
    resulting item state in a fire-and-forget task whose failure is logged
    and never rolls the mutation back.
    """

    def __init__(
        self,
        cache: LocalCacheStore,
        gateway: RemoteGateway,
        probe: ConnectivityProbe,
        default_supermarket: Optional[str] = None
    ):
        super().__init__(cache, gateway, probe)
        self.default_supermarket = default_supermarket or get_settings().DEFAULT_SUPERMARKET_NAME
        self._items: List[BasketItem] = []
        self.selected_supermarket: Optional[str] = None
        self.is_shop_mode: bool = False
        self.user_id: Optional[str] = None
        self.active_saved_basket_id: Optional[str] = None
        self.active_basket_name: Optional[str] = None
        self._persist_lock = asyncio.Lock()

    # --- Derived state ---

    @property
    def items(self) -> List[BasketItem]:
        return list(self._items)

    @property
    def total(self) -> float:
        """Recomputed from the current items on every read."""
        return sum(item.price * item.quantity for item in self._items)

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def state(self) -> BasketState:
        if not self._items:
            return BasketState.EMPTY
        if self.active_saved_basket_id is not None:
            return BasketState.LOADED_FROM_SAVED
        return BasketState.ACTIVE

    def get_item(self, item_id: str) -> Optional[BasketItem]:
        return next((item for item in self._items if item.id == item_id), None)

    # --- Persistence ---

    async def restore(self) -> None:
        """Load the persisted session at start-up, defaulting on read failures."""
        try:
            rows = await self.cache.get_json(CacheKey.BASKET)
            self._items = [BasketItem.model_validate(row) for row in rows or []]
        except (StorageError, PydanticValidationError, TypeError) as e:
            self.logger.error("Failed to load basket", error=str(e))
            self._items = []

        try:
            self.selected_supermarket = await self.cache.get(CacheKey.SELECTED_SUPERMARKET)
            self.is_shop_mode = bool(await self.cache.get_json(CacheKey.SHOP_MODE))
        except StorageError as e:
            self.logger.error("Failed to load supermarket session", error=e.message)

        self.logger.debug(
            "Basket session restored",
            items=len(self._items),
            supermarket=self.selected_supermarket,
            shop_mode=self.is_shop_mode
        )

    async def _persist_basket(self) -> None:
        """Write the current items; writes are serialized so the last one is the newest."""
        async with self._persist_lock:
            snapshot = [item.to_wire() for item in self._items]
            try:
                await self.cache.set_json(CacheKey.BASKET, snapshot)
            except StorageError as e:
                self.logger.error("Failed to persist basket", error=e.message)

    def _commit(self, items: List[BasketItem]) -> Awaitable[None]:
        """Swap in the new item list and return the pending local write."""
        self._items = items
        return self._persist_basket()

    # --- Remote mirror ---

    def _mirror(self, action: str, operation: Callable[[str], Awaitable[None]]):
        """Fire a best-effort remote write for the attached user, if any."""
        user_id = self.user_id
        if user_id is None:
            return None

        async def run() -> None:
            if not await self.probe.is_reachable():
                self.logger.debug(f"{action}: skipped, backend unreachable", user_id=user_id)
                return
            await operation(user_id)

        return self._spawn(run(), action)

    async def wait_for_remote(self) -> None:
        """Wait for every remote mirror write issued so far."""
        await self.wait_for_background()

    # --- Mutations ---

    async def add_item(self, item: BasketItem) -> BasketItem:
        """
        Add a product to the basket.

        A product already in the basket (same barcode) has its quantity
        increased instead of getting a second line.

        Returns:
            The resulting basket line
        """
        if not item.supermarket:
            item = item.model_copy(update={"supermarket": self.selected_supermarket or ""})

        existing = next((i for i in self._items if i.barcode == item.barcode), None)
        if existing is not None:
            result = existing.model_copy(
                update={"quantity": max(1, existing.quantity + item.quantity)}
            )
            items = [result if i.id == existing.id else i for i in self._items]
        else:
            result = item.model_copy(update={"quantity": max(1, item.quantity)})
            items = [*self._items, result]

        await self._commit(items)
        self._log_action("add_item", item_id=result.id, quantity=result.quantity)
        self._mirror("Sync basket item", lambda uid: self.gateway.upsert_basket_item(uid, result))
        return result

    async def remove_item(self, item_id: str) -> bool:
        if self.get_item(item_id) is None:
            return False

        await self._commit([i for i in self._items if i.id != item_id])
        self._log_action("remove_item", item_id=item_id)
        self._mirror("Delete basket item", lambda uid: self.gateway.delete_basket_item(uid, item_id))
        return True

    async def _change_quantity(self, item_id: str, compute: Callable[[int], int]) -> Optional[BasketItem]:
        current = self.get_item(item_id)
        if current is None:
            return None

        result = current.model_copy(update={"quantity": max(1, compute(current.quantity))})
        await self._commit([result if i.id == item_id else i for i in self._items])
        self._mirror("Sync basket item", lambda uid: self.gateway.upsert_basket_item(uid, result))
        return result

    async def update_quantity(self, item_id: str, delta: int) -> Optional[BasketItem]:
        """Change a line's quantity by ``delta``, never below one."""
        return await self._change_quantity(item_id, lambda q: q + delta)

    async def set_quantity(self, item_id: str, quantity: int) -> Optional[BasketItem]:
        """Set a line's quantity; values below one become one."""
        return await self._change_quantity(item_id, lambda q: quantity)

    async def clear(self) -> None:
        """Empty the basket and release any saved-basket binding."""
        self.active_saved_basket_id = None
        self.active_basket_name = None
        await self._commit([])
        self._log_action("clear_basket")
        self._mirror("Clear basket", self.gateway.clear_user_basket)

    async def replace(self, items: List[BasketItem]) -> None:
        """Swap the whole basket for ``items``; nothing is merged."""
        snapshot = [i.model_copy(update={"quantity": max(1, i.quantity)}) for i in items]
        await self._commit(snapshot)
        self._log_action("replace_basket", items=len(snapshot))

        async def push(uid: str) -> None:
            await self.gateway.clear_user_basket(uid)
            for item in snapshot:
                await self.gateway.upsert_basket_item(uid, item)

        self._mirror("Replace basket", push)

    async def finish_shopping(self) -> None:
        """Checkout: empty the basket and leave shop mode."""
        await self.clear()
        await self.set_shop_mode(False)

    # --- Session settings ---

    async def set_selected_supermarket(self, name: str) -> None:
        self.selected_supermarket = name
        try:
            await self.cache.set(CacheKey.SELECTED_SUPERMARKET, name)
        except StorageError as e:
            self.logger.error("Failed to save supermarket session", error=e.message)

    async def set_shop_mode(self, enabled: bool) -> None:
        self.is_shop_mode = enabled
        try:
            await self.cache.set_json(CacheKey.SHOP_MODE, enabled)
        except StorageError as e:
            self.logger.error("Failed to save shop mode", error=e.message)

    # --- Authentication ---

    async def attach_user(self, user_id: str) -> ReconcileOutcome:
        """
        Bind a signed-in user and reconcile the basket once.

        A non-empty remote basket replaces the local one. Otherwise a
        non-empty local basket is uploaded item by item. Failures are logged
        and leave the local basket as it was.
        """
        self.user_id = user_id

        if not await self.probe.is_reachable():
            self.logger.info("Basket reconciliation skipped, backend unreachable", user_id=user_id)
            return ReconcileOutcome.SKIPPED

        try:
            remote_items = await self.gateway.get_user_basket(user_id)
            if remote_items:
                await self._commit(list(remote_items))
                self._log_action("reconcile_basket", "remote_wins", user_id=user_id, items=len(remote_items))
                return ReconcileOutcome.REMOTE_WINS

            local_items = list(self._items)
            if not local_items:
                return ReconcileOutcome.NOTHING_TO_DO

            for item in local_items:
                await self.gateway.upsert_basket_item(user_id, item)
            self._log_action("reconcile_basket", "local_uploaded", user_id=user_id, items=len(local_items))
            return ReconcileOutcome.LOCAL_UPLOADED
        except GatewayError as e:
            self.logger.warning("Basket reconciliation failed", user_id=user_id, error=e.message)
            return ReconcileOutcome.SKIPPED

    def detach_user(self) -> None:
        """Sign-out: stop mirroring; the local basket stays on the device."""
        self.logger.info("User detached from basket session", user_id=self.user_id)
        self.user_id = None
        self.active_saved_basket_id = None
        self.active_basket_name = None

    # --- Saved baskets ---

    async def _require_remote(self) -> Optional[Result]:
        if self.user_id is None:
            return Result.fail("Sign in to manage saved baskets", suggestions=["Sign in and try again"])
        if not await self.probe.is_reachable():
            return Result.fail("No connection to the server", suggestions=["Try again when online"])
        return None

    async def list_saved_baskets(self) -> Result[List[SavedBasket]]:
        failure = await self._require_remote()
        if failure:
            return failure
        try:
            return Result.ok(await self.gateway.list_named_baskets(self.user_id))
        except GatewayError as e:
            self.logger.error("Error loading saved baskets", error=e.message)
            return Result.from_gateway_error(e)

    async def save(self, name: Optional[str] = None) -> Result[str]:
        """
        Save the basket under a name.

        Creates a saved basket the first time and binds it to the session;
        while bound, saving updates that basket in place.

        Args:
            name: Name for a new saved basket (ignored when already bound)

        Returns:
            Result containing the saved basket id; ``metadata['created']``
            tells whether a new record was made
        """
        failure = await self._require_remote()
        if failure:
            return failure
        if not self._items:
            return Result.fail("The basket is empty")

        items = [SavedBasketItem.from_basket_item(i) for i in self._items]
        total = self.total

        try:
            if self.active_saved_basket_id is not None:
                await self.gateway.update_named_basket(
                    self.user_id,
                    self.active_saved_basket_id,
                    total,
                    items
                )
                self._log_action("save_basket", "updated", basket_id=self.active_saved_basket_id)
                return Result.ok(self.active_saved_basket_id, created=False)

            if not name or not name.strip():
                return Result.fail("Basket name cannot be empty")

            saved = await self.gateway.create_named_basket(
                self.user_id,
                name.strip(),
                self.selected_supermarket or self.default_supermarket,
                total,
                items
            )
        except GatewayError as e:
            self.logger.error("Failed to save basket", error=e.message)
            return Result.from_gateway_error(e)

        self.active_saved_basket_id = saved.id
        self.active_basket_name = saved.name
        self._log_action("save_basket", "created", basket_id=saved.id)
        return Result.ok(saved.id, created=True)

    async def load(self, saved: SavedBasket) -> Result[List[BasketItem]]:
        """
        Replace the live basket with a saved basket's items.

        Each loaded line gets a fresh session-local id.
        """
        failure = await self._require_remote()
        if failure:
            return failure

        try:
            saved_items = await self.gateway.get_named_basket_items(saved.id)
        except GatewayError as e:
            self.logger.error("Error loading basket items", basket_id=saved.id, error=e.message)
            return Result.from_gateway_error(e)

        now = utc_now_iso()
        items = [
            BasketItem(
                id=generate_id("item"),
                barcode=s.barcode,
                product_name=s.product_name,
                price=s.price,
                quantity=s.quantity,
                supermarket=saved.supermarket,
                image_url=s.image_url,
                timestamp=now,
            )
            for s in saved_items
        ]

        await self.replace(items)
        await self.set_selected_supermarket(saved.supermarket)
        self.active_saved_basket_id = saved.id
        self.active_basket_name = saved.name
        self._log_action("load_basket", basket_id=saved.id, items=len(items))
        return Result.ok(self.items)

    async def rename(self, basket_id: str, new_name: str) -> Result[str]:
        if not new_name or not new_name.strip():
            return Result.fail("Basket name cannot be empty")
        failure = await self._require_remote()
        if failure:
            return failure

        try:
            await self.gateway.rename_named_basket(self.user_id, basket_id, new_name.strip())
        except GatewayError as e:
            self.logger.error("Failed to rename basket", basket_id=basket_id, error=e.message)
            return Result.from_gateway_error(e)

        if basket_id == self.active_saved_basket_id:
            self.active_basket_name = new_name.strip()
        self._log_action("rename_basket", basket_id=basket_id)
        return Result.ok(new_name.strip())

    async def delete(self, basket_id: str) -> Result[str]:
        """Delete a saved basket; deleting the bound one also clears the live basket."""
        failure = await self._require_remote()
        if failure:
            return failure

        try:
            await self.gateway.delete_named_basket(self.user_id, basket_id)
        except GatewayError as e:
            self.logger.error("Failed to delete basket", basket_id=basket_id, error=e.message)
            return Result.from_gateway_error(e)

        if basket_id == self.active_saved_basket_id:
            self.logger.info("Deleted active basket, clearing basket session", basket_id=basket_id)
            await self.clear()
        self._log_action("delete_basket", basket_id=basket_id)
        return Result.ok(basket_id)
