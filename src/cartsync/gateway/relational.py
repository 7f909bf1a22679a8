"""Adapter for the relational backend-as-a-service."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from cartsync.db.session import TransactionManager, create_session_factory
from cartsync.domain.types import (
    BasketItem,
    PriceEntry,
    Product,
    RpcEnvelope,
    SavedBasket,
    SavedBasketItem,
    Supermarket,
    UserProfile,
    utc_now_iso,
)
from cartsync.models import (
    Base,
    BasketItemRecord,
    PriceRecord,
    ProductRecord,
    SavedBasketItemRecord,
    SavedBasketRecord,
    SupermarketRecord,
    UserRecord,
)
from .base import RemoteGateway
from .errors import (
    ConflictError,
    ConnectivityError,
    GatewayError,
    NotFoundError,
    RemoteRejectionError,
)


# --- Record conversion ---

def _price_to_record(entry: PriceEntry) -> PriceRecord:
    location = entry.location
    return PriceRecord(
        id=entry.id,
        user_id=entry.user_id,
        product_name=entry.product_name,
        price=entry.price,
        supermarket=entry.supermarket,
        quantity=entry.quantity,
        timestamp=entry.timestamp,
        barcode=entry.barcode,
        brand=entry.brand,
        image_url=entry.image_url,
        latitude=location.latitude if location else None,
        longitude=location.longitude if location else None,
        address=location.address if location else None,
    )


def _price_from_record(record: PriceRecord) -> PriceEntry:
    location = None
    if record.latitude is not None and record.longitude is not None:
        location = {
            "latitude": record.latitude,
            "longitude": record.longitude,
            "address": record.address,
        }
    return PriceEntry(
        id=record.id,
        user_id=record.user_id,
        product_name=record.product_name,
        price=record.price,
        supermarket=record.supermarket,
        quantity=record.quantity,
        timestamp=record.timestamp,
        barcode=record.barcode,
        brand=record.brand,
        image_url=record.image_url,
        location=location,
    )


def _user_from_record(record: UserRecord) -> UserProfile:
    return UserProfile(
        id=record.id,
        display_name=record.display_name,
        avatar_id=record.avatar_id,
        joined_date=record.joined_date,
        level=record.level,
        points=record.points,
        badges=list(record.badges or []),
        stats={
            "prices_shared": record.prices_shared,
            "total_savings": record.total_savings,
        },
    )


def _supermarket_from_record(record: SupermarketRecord) -> Supermarket:
    return Supermarket(
        id=record.id,
        name=record.name,
        type=record.type,
        address=record.address,
        latitude=record.latitude,
        longitude=record.longitude,
    )


def _product_from_record(record: ProductRecord) -> Product:
    return Product(
        barcode=record.barcode,
        name=record.name,
        brand=record.brand,
        image_url=record.image_url,
        created_at=record.created_at,
    )


def _basket_item_from_record(record: BasketItemRecord) -> BasketItem:
    return BasketItem(
        id=record.id,
        barcode=record.barcode,
        product_name=record.product_name,
        price=record.price,
        quantity=record.quantity,
        supermarket=record.supermarket,
        image_url=record.image_url,
        timestamp=record.timestamp,
    )


def _saved_basket_from_record(record: SavedBasketRecord) -> SavedBasket:
    return SavedBasket(
        id=record.id,
        name=record.name,
        supermarket=record.supermarket,
        total_amount=record.total_amount,
        item_count=record.item_count,
        created_at=record.created_at,
    )


def _saved_item_records(basket_id: str, items: List[SavedBasketItem]) -> List[SavedBasketItemRecord]:
    return [
        SavedBasketItemRecord(
            basket_id=basket_id,
            position=position,
            barcode=item.barcode,
            product_name=item.product_name,
            price=item.price,
            quantity=item.quantity,
            image_url=item.image_url,
        )
        for position, item in enumerate(items)
    ]


class RelationalGateway(RemoteGateway):
    """
    Table-level CRUD plus atomic remote procedures over SQLAlchemy.

    Saved-basket writes go through ``create_basket``,
    ``update_basket_details`` and ``delete_basket``, each of which runs in a
    single transaction and answers with an ``RpcEnvelope``.
    """

    name = "relational"

    def __init__(self, engine: AsyncEngine):
        super().__init__()
        self.engine = engine
        self.transaction = TransactionManager(create_session_factory(engine))

    async def initialize(self) -> None:
        async with self._guard("initialize schema"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _guard(self, action: str) -> AsyncGenerator[None, None]:
        """Translate database exceptions into gateway errors."""
        try:
            yield
        except GatewayError:
            raise
        except OperationalError as e:
            raise ConnectivityError(f"Failed to {action}: {e.orig}") from e
        except SQLAlchemyError as e:
            raise GatewayError(f"Failed to {action}: {e}") from e

    async def ping(self) -> bool:
        async with self._guard("reach backend"):
            async with self.transaction.transaction(auto_commit=False) as session:
                await session.execute(text("SELECT 1"))
        return True

    # --- Prices ---

    async def get_prices(self, barcode: Optional[str] = None) -> List[PriceEntry]:
        query = select(PriceRecord).order_by(PriceRecord.timestamp.desc())
        if barcode:
            query = query.where(PriceRecord.barcode == barcode)

        async with self._guard("fetch prices"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(query)).scalars().all()
        return [_price_from_record(r) for r in records]

    async def get_prices_by_supermarket(self, supermarket: str) -> List[PriceEntry]:
        query = (
            select(PriceRecord)
            .where(PriceRecord.supermarket == supermarket)
            .order_by(PriceRecord.product_name.asc())
        )
        async with self._guard("fetch supermarket prices"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(query)).scalars().all()
        return [_price_from_record(r) for r in records]

    async def add_price(self, entry: PriceEntry) -> bool:
        """
        Insert a price unless it repeats the latest one for its store.

        The latest entry with the same barcode and supermarket is compared
        by exact price; a match skips the write regardless of its age.
        """
        async with self._guard("add price"):
            async with self.transaction.transaction() as session:
                if entry.barcode:
                    latest = (await session.execute(
                        select(PriceRecord)
                        .where(
                            PriceRecord.barcode == entry.barcode,
                            PriceRecord.supermarket == entry.supermarket
                        )
                        .order_by(PriceRecord.timestamp.desc())
                        .limit(1)
                    )).scalar_one_or_none()

                    if latest is not None and latest.price == entry.price:
                        self.logger.info(
                            "Skipping duplicate price",
                            barcode=entry.barcode,
                            supermarket=entry.supermarket,
                            price=entry.price,
                            existing_id=latest.id
                        )
                        return False

                await session.merge(_price_to_record(entry))
        return True

    async def batch_upload_prices(self, entries: List[PriceEntry]) -> None:
        if not entries:
            return

        async with self._guard("batch upload prices"):
            async with self.transaction.transaction() as session:
                ids = [e.id for e in entries]
                existing = set((await session.execute(
                    select(PriceRecord.id).where(PriceRecord.id.in_(ids))
                )).scalars().all())

                inserted = 0
                for entry in entries:
                    if entry.id in existing:
                        continue
                    session.add(_price_to_record(entry))
                    existing.add(entry.id)
                    inserted += 1

        self.logger.info(
            "Batch upload processed",
            received=len(entries),
            inserted=inserted
        )

    # --- Users ---

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        async with self._guard("fetch user"):
            async with self.transaction.transaction(auto_commit=False) as session:
                record = await session.get(UserRecord, user_id)
        return _user_from_record(record) if record else None

    async def save_user(self, profile: UserProfile) -> None:
        async with self._guard("save user"):
            async with self.transaction.transaction() as session:
                await session.merge(UserRecord(
                    id=profile.id,
                    display_name=profile.display_name,
                    avatar_id=profile.avatar_id,
                    joined_date=profile.joined_date,
                    level=profile.level,
                    points=profile.points,
                    badges=list(profile.badges),
                    prices_shared=profile.stats.prices_shared,
                    total_savings=profile.stats.total_savings,
                ))

    # --- Products ---

    async def get_product(self, barcode: str) -> Optional[Product]:
        async with self._guard("fetch product"):
            async with self.transaction.transaction(auto_commit=False) as session:
                record = await session.get(ProductRecord, barcode)
        return _product_from_record(record) if record else None

    async def save_product(self, product: Product) -> None:
        async with self._guard("save product"):
            async with self.transaction.transaction() as session:
                await session.merge(ProductRecord(
                    barcode=product.barcode,
                    name=product.name,
                    brand=product.brand,
                    image_url=product.image_url,
                    created_at=product.created_at or utc_now_iso(),
                ))

    async def list_products(self) -> List[Product]:
        async with self._guard("list products"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(
                    select(ProductRecord).order_by(ProductRecord.name)
                )).scalars().all()
        return [_product_from_record(r) for r in records]

    # --- Supermarkets ---

    async def get_supermarkets(self) -> List[Supermarket]:
        async with self._guard("fetch supermarkets"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(
                    select(SupermarketRecord).order_by(SupermarketRecord.name)
                )).scalars().all()
        return [_supermarket_from_record(r) for r in records]

    async def add_supermarket(self, name: str) -> Supermarket:
        name = name.strip()
        if not name:
            raise RemoteRejectionError("Name is required")

        try:
            async with self._guard("add supermarket"):
                async with self.transaction.transaction() as session:
                    existing = (await session.execute(
                        select(SupermarketRecord).where(SupermarketRecord.name == name)
                    )).scalar_one_or_none()
                    if existing is not None:
                        raise ConflictError(
                            "Supermarket already exists",
                            metadata={"name": name}
                        )

                    record = SupermarketRecord(name=name, type="Supermarket", address="")
                    session.add(record)
                    await session.flush()
                    created = _supermarket_from_record(record)
        except GatewayError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise ConflictError("Supermarket already exists", metadata={"name": name}) from e
            raise
        return created

    # --- Live basket mirror ---

    async def get_user_basket(self, user_id: str) -> List[BasketItem]:
        async with self._guard("fetch basket"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(
                    select(BasketItemRecord)
                    .where(BasketItemRecord.user_id == user_id)
                    .order_by(BasketItemRecord.timestamp)
                )).scalars().all()
        return [_basket_item_from_record(r) for r in records]

    async def upsert_basket_item(self, user_id: str, item: BasketItem) -> None:
        async with self._guard("sync basket item"):
            async with self.transaction.transaction() as session:
                await session.merge(BasketItemRecord(
                    id=item.id,
                    user_id=user_id,
                    barcode=item.barcode,
                    product_name=item.product_name,
                    price=item.price,
                    quantity=item.quantity,
                    supermarket=item.supermarket,
                    image_url=item.image_url,
                    timestamp=item.timestamp,
                ))

    async def delete_basket_item(self, user_id: str, item_id: str) -> None:
        async with self._guard("delete basket item"):
            async with self.transaction.transaction() as session:
                await session.execute(
                    delete(BasketItemRecord).where(
                        BasketItemRecord.id == item_id,
                        BasketItemRecord.user_id == user_id
                    )
                )

    async def clear_user_basket(self, user_id: str) -> None:
        async with self._guard("clear basket"):
            async with self.transaction.transaction() as session:
                await session.execute(
                    delete(BasketItemRecord).where(BasketItemRecord.user_id == user_id)
                )

    # --- Remote procedures ---

    async def create_basket(
        self,
        user_id: str,
        name: str,
        supermarket: str,
        total_amount: float,
        item_count: int,
        items: List[SavedBasketItem]
    ) -> RpcEnvelope:
        """Create a saved basket and its items atomically."""
        if not name or not name.strip():
            return RpcEnvelope(success=False, error="Basket name is required")

        async with self._guard("create basket"):
            async with self.transaction.transaction() as session:
                basket = SavedBasketRecord(
                    user_id=user_id,
                    name=name.strip(),
                    supermarket=supermarket,
                    total_amount=total_amount,
                    item_count=item_count,
                )
                session.add(basket)
                await session.flush()
                session.add_all(_saved_item_records(basket.id, items))
        return RpcEnvelope(success=True, id=basket.id)

    async def update_basket_details(
        self,
        user_id: str,
        basket_id: str,
        total_amount: float,
        item_count: int,
        items: List[SavedBasketItem]
    ) -> RpcEnvelope:
        """Replace a saved basket's totals and items atomically."""
        async with self._guard("update basket"):
            async with self.transaction.transaction() as session:
                basket = await session.get(SavedBasketRecord, basket_id)
                if basket is None:
                    return RpcEnvelope(success=False, error="Basket not found")
                if basket.user_id != user_id:
                    return RpcEnvelope(success=False, error="Not allowed to modify this basket")

                basket.total_amount = total_amount
                basket.item_count = item_count
                await session.execute(
                    delete(SavedBasketItemRecord).where(SavedBasketItemRecord.basket_id == basket_id)
                )
                session.add_all(_saved_item_records(basket_id, items))
        return RpcEnvelope(success=True, id=basket_id)

    async def delete_basket(self, user_id: str, basket_id: str) -> RpcEnvelope:
        """Delete a saved basket and its items atomically."""
        async with self._guard("delete basket"):
            async with self.transaction.transaction() as session:
                basket = await session.get(SavedBasketRecord, basket_id)
                if basket is None:
                    return RpcEnvelope(success=False, error="Basket not found")
                if basket.user_id != user_id:
                    return RpcEnvelope(success=False, error="Not allowed to delete this basket")

                await session.execute(
                    delete(SavedBasketItemRecord).where(SavedBasketItemRecord.basket_id == basket_id)
                )
                await session.execute(
                    delete(SavedBasketRecord).where(SavedBasketRecord.id == basket_id)
                )
        return RpcEnvelope(success=True, id=basket_id)

    @staticmethod
    def _unwrap(envelope: RpcEnvelope, **metadata) -> RpcEnvelope:
        if not envelope.success:
            error = envelope.error or "Request rejected"
            if error == "Basket not found":
                raise NotFoundError(error, metadata=metadata)
            raise RemoteRejectionError(error, metadata=metadata)
        return envelope

    # --- Saved baskets ---

    async def create_named_basket(
        self,
        user_id: str,
        name: str,
        supermarket: str,
        total_amount: float,
        items: List[SavedBasketItem]
    ) -> SavedBasket:
        envelope = self._unwrap(
            await self.create_basket(user_id, name, supermarket, total_amount, len(items), items),
            name=name
        )
        async with self._guard("fetch basket"):
            async with self.transaction.transaction(auto_commit=False) as session:
                record = await session.get(SavedBasketRecord, envelope.id)
        return _saved_basket_from_record(record)

    async def update_named_basket(
        self,
        user_id: str,
        basket_id: str,
        total_amount: float,
        items: List[SavedBasketItem]
    ) -> None:
        self._unwrap(
            await self.update_basket_details(user_id, basket_id, total_amount, len(items), items),
            basket_id=basket_id
        )

    async def delete_named_basket(self, user_id: str, basket_id: str) -> None:
        self._unwrap(await self.delete_basket(user_id, basket_id), basket_id=basket_id)

    async def rename_named_basket(self, user_id: str, basket_id: str, new_name: str) -> None:
        if not new_name or not new_name.strip():
            raise RemoteRejectionError("Basket name is required")

        async with self._guard("rename basket"):
            async with self.transaction.transaction() as session:
                result = await session.execute(
                    update(SavedBasketRecord)
                    .where(
                        SavedBasketRecord.id == basket_id,
                        SavedBasketRecord.user_id == user_id
                    )
                    .values(name=new_name.strip())
                )
                if result.rowcount == 0:
                    raise NotFoundError("Basket not found", metadata={"basket_id": basket_id})

    async def list_named_baskets(self, user_id: str) -> List[SavedBasket]:
        async with self._guard("list baskets"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(
                    select(SavedBasketRecord)
                    .where(SavedBasketRecord.user_id == user_id)
                    .order_by(SavedBasketRecord.created_at.desc())
                )).scalars().all()
        return [_saved_basket_from_record(r) for r in records]

    async def get_named_basket_items(self, basket_id: str) -> List[SavedBasketItem]:
        async with self._guard("fetch basket items"):
            async with self.transaction.transaction(auto_commit=False) as session:
                records = (await session.execute(
                    select(SavedBasketItemRecord)
                    .where(SavedBasketItemRecord.basket_id == basket_id)
                    .order_by(SavedBasketItemRecord.position)
                )).scalars().all()
        return [
            SavedBasketItem(
                barcode=r.barcode,
                product_name=r.product_name,
                price=r.price,
                quantity=r.quantity,
                image_url=r.image_url,
            )
            for r in records
        ]
