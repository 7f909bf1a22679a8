"""Domain types for CartSync.

Wire and cache payloads use camelCase keys (``productName``, ``imageUrl``)
while Python code uses snake_case attributes. Saved basket headers keep the
snake_case column names of the relational backend (``total_amount``).
"""
import random
import string
import time
from datetime import datetime, UTC
from typing import NewType, Optional, List, Any, Annotated
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# Strong types for IDs
UserId = NewType('UserId', str)
PriceId = NewType('PriceId', str)
BasketItemId = NewType('BasketItemId', str)
SavedBasketId = NewType('SavedBasketId', str)

Price = Annotated[float, Field(ge=0)]


def _format_utc(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current UTC instant as an ISO-8601 string with millisecond precision."""
    return _format_utc(datetime.now(UTC))


def normalize_timestamp(value: Any) -> str:
    """
    Rewrite an ISO-8601 instant in the ``utc_now_iso()`` form.

    Stored timestamps are ordered as strings, so every one of them must share
    this form. Naive values are taken as UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 date-time
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        moment = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"Expected an ISO-8601 timestamp, got {type(value).__name__}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return _format_utc(moment)


Timestamp = Annotated[str, BeforeValidator(normalize_timestamp)]


def generate_id(prefix: str) -> str:
    """Generate an opaque ``<prefix>_<epoch-ms>_<9 base36 chars>`` identifier."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class WireModel(BaseModel):
    """Base for models serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        """Dump to a JSON-compatible dict using wire keys."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Location(WireModel):
    """Where a price was observed."""
    latitude: float
    longitude: float
    address: Optional[str] = None


class PriceEntry(WireModel):
    """A single price observation."""
    id: PriceId
    user_id: Optional[UserId] = None
    product_name: str
    price: Price
    supermarket: str
    quantity: Optional[str] = None
    timestamp: Timestamp = Field(default_factory=utc_now_iso)
    barcode: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    location: Optional[Location] = None

    @property
    def product_key(self) -> str:
        """Grouping key: barcode, falling back to product name."""
        return self.barcode or self.product_name


class NewPriceEntry(WireModel):
    """Price entry as submitted by the user, before an id is assigned."""
    user_id: Optional[UserId] = None
    product_name: str
    price: Price
    supermarket: str
    quantity: Optional[str] = None
    timestamp: Timestamp = Field(default_factory=utc_now_iso)
    barcode: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    location: Optional[Location] = None

    def with_id(self, price_id: str) -> PriceEntry:
        return PriceEntry(id=price_id, **self.model_dump())


class BasketItem(WireModel):
    """One line item in the live basket."""
    id: BasketItemId = Field(default_factory=lambda: generate_id("item"))
    barcode: str
    product_name: str
    price: Price
    quantity: int = 1
    supermarket: str = ""
    image_url: Optional[str] = None
    timestamp: Timestamp = Field(default_factory=utc_now_iso)

    @field_validator('quantity')
    @classmethod
    def clamp_quantity(cls, v: int) -> int:
        """Quantity never drops below one."""
        return max(1, v)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class SavedBasketItem(WireModel):
    """A line of a saved basket snapshot."""
    barcode: str
    product_name: str
    price: Price
    quantity: int = 1
    image_url: Optional[str] = None

    @classmethod
    def from_basket_item(cls, item: BasketItem) -> 'SavedBasketItem':
        return cls(
            barcode=item.barcode,
            product_name=item.product_name,
            price=item.price,
            quantity=item.quantity,
            image_url=item.image_url,
        )


class SavedBasket(BaseModel):
    """Header of a named, persisted basket."""
    id: SavedBasketId
    name: str
    supermarket: str
    total_amount: float = 0.0
    item_count: int = 0
    created_at: Optional[datetime] = None


class UserStats(WireModel):
    prices_shared: int = 0
    total_savings: float = 0.0
    streak_days: Optional[int] = None
    rank: Optional[int] = None


class UserProfile(WireModel):
    """A user's public profile."""
    id: UserId
    display_name: str
    avatar_id: str = "avatar1"
    joined_date: str = Field(default_factory=utc_now_iso)
    level: Optional[int] = None
    points: Optional[int] = None
    badges: List[str] = []
    stats: UserStats = Field(default_factory=UserStats)


class Supermarket(WireModel):
    id: Optional[int] = None
    name: str
    type: str = "Supermarket"
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class Product(WireModel):
    barcode: str = ""
    name: str
    brand: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[str] = None
    best_price: Optional[float] = None
    supermarket: Optional[str] = None


class RpcEnvelope(BaseModel):
    """Outcome of an atomic remote procedure.

    Distinguishes a business-rule rejection (``success=False`` with an
    ``error``) from a transport failure, which raises instead.
    """
    success: bool
    error: Optional[str] = None
    id: Optional[Any] = None
