"""PriceRecord model for CartSync."""
from typing import Optional
from sqlalchemy import String, Float, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PriceRecord(Base):
    """A price observation stored by the relational backend."""

    __tablename__ = "prices"

    # Duplicate suppression looks up the latest price per barcode and store
    __table_args__ = (
        Index("ix_prices_barcode_supermarket", "barcode", "supermarket"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    supermarket: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[Optional[str]] = mapped_column(String(50))
    # ISO-8601 strings in UTC sort chronologically
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(64))
    brand: Mapped[Optional[str]] = mapped_column(String(200))
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(String(300))

    def __repr__(self) -> str:
        return f"<PriceRecord(id='{self.id}', barcode='{self.barcode}', price={self.price})>"
