"""Tests for the domain value types."""
import re
from datetime import datetime, timezone, timedelta

import pytest
from pydantic import ValidationError

from cartsync.domain.types import (
    BasketItem,
    NewPriceEntry,
    PriceEntry,
    normalize_timestamp,
    utc_now_iso,
)


def test_utc_now_iso_format():
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_now_iso())


@pytest.mark.parametrize("raw, expected", [
    ("2024-01-01T10:00:00.000Z", "2024-01-01T10:00:00.000Z"),
    ("2024-01-01T12:00:00+02:00", "2024-01-01T10:00:00.000Z"),
    ("2024-01-01T10:00:00", "2024-01-01T10:00:00.000Z"),
    ("2024-01-01T10:00:00.123456Z", "2024-01-01T10:00:00.123Z"),
    (datetime(2024, 1, 1, 5, 0, tzinfo=timezone(timedelta(hours=-5))), "2024-01-01T10:00:00.000Z"),
])
def test_normalize_timestamp(raw, expected):
    """Test that instants are rewritten as UTC with milliseconds."""
    assert normalize_timestamp(raw) == expected


def test_normalize_timestamp_rejects_garbage():
    with pytest.raises(ValueError):
        normalize_timestamp("yesterday")
    with pytest.raises(ValueError):
        normalize_timestamp(1704103200)


def test_price_entry_timestamp_normalized():
    """Test that every timestamped model stores the normalized form."""
    fields = dict(product_name="Milk", price=5.9, supermarket="Shufersal", timestamp="2024-01-01T12:00:00+02:00")

    assert PriceEntry(id="p1", **fields).timestamp == "2024-01-01T10:00:00.000Z"
    assert NewPriceEntry(**fields).with_id("p2").timestamp == "2024-01-01T10:00:00.000Z"
    item = BasketItem(barcode="111", product_name="Milk", price=5.9, timestamp="2024-01-01T10:00:00")
    assert item.timestamp == "2024-01-01T10:00:00.000Z"


def test_invalid_timestamp_rejected():
    with pytest.raises(ValidationError):
        PriceEntry(id="p1", product_name="Milk", price=5.9, supermarket="Shufersal", timestamp="soon")


def test_basket_item_quantity_clamped():
    assert BasketItem(barcode="111", product_name="Milk", price=5.9, quantity=0).quantity == 1
