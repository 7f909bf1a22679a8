"""UserRecord model for CartSync."""
from typing import Optional
from sqlalchemy import String, Integer, Float, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UserRecord(Base):
    """A user profile with its stats flattened into columns."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar_id: Mapped[str] = mapped_column(String(50), nullable=False)
    joined_date: Mapped[str] = mapped_column(String(40), nullable=False)
    level: Mapped[Optional[int]] = mapped_column(Integer)
    points: Mapped[Optional[int]] = mapped_column(Integer)
    badges: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    prices_shared: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_savings: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    def __repr__(self) -> str:
        return f"<UserRecord(id='{self.id}', display_name='{self.display_name}')>"
