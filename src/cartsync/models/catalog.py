"""Product and supermarket models for CartSync."""
from typing import Optional
from sqlalchemy import String, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ProductRecord(Base):
    """Product metadata keyed by barcode."""

    __tablename__ = "products"

    barcode: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(200))
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)

    def __repr__(self) -> str:
        return f"<ProductRecord(barcode='{self.barcode}', name='{self.name}')>"


class SupermarketRecord(Base):
    """A supermarket; names are unique."""

    __tablename__ = "supermarkets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(50), default="Supermarket", nullable=False)
    address: Mapped[str] = mapped_column(String(300), default="", nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)

    def __repr__(self) -> str:
        return f"<SupermarketRecord(id={self.id}, name='{self.name}')>"
