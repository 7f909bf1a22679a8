"""Basket models for CartSync."""
import uuid
from typing import Optional
from sqlalchemy import String, Float, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin


class BasketItemRecord(Base):
    """Mirror of one live basket line, keyed by its session-local id."""

    __tablename__ = "basket_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    barcode: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    supermarket: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False)

    def __repr__(self) -> str:
        return f"<BasketItemRecord(id='{self.id}', quantity={self.quantity})>"


class SavedBasketRecord(Base, CreatedAtMixin):
    """A named basket snapshot owned by one user."""

    __tablename__ = "saved_baskets"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    supermarket: Mapped[str] = mapped_column(String(200), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<SavedBasketRecord(id='{self.id}', name='{self.name}')>"


class SavedBasketItemRecord(Base):
    """One ordered line of a saved basket."""

    __tablename__ = "saved_basket_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    basket_id: Mapped[str] = mapped_column(
        ForeignKey("saved_baskets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    barcode: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500))

    def __repr__(self) -> str:
        return f"<SavedBasketItemRecord(barcode='{self.barcode}', quantity={self.quantity})>"
