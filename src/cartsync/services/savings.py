"""Savings computed from community price observations."""
from collections import defaultdict
from typing import Dict, Iterable, List

from cartsync.domain.types import PriceEntry


def group_prices_by_product(prices: Iterable[PriceEntry]) -> Dict[str, List[float]]:
    """Group observed prices by barcode, falling back to product name."""
    groups: Dict[str, List[float]] = defaultdict(list)
    for entry in prices:
        key = entry.product_key
        if key:
            groups[key].append(entry.price)
    return dict(groups)


def calculate_potential_savings(prices: Iterable[PriceEntry]) -> float:
    """
    Sum of the price spread of every product seen more than once.

    Args:
        prices: Price observations from any number of supermarkets

    Returns:
        Sum over products of (highest price - lowest price); products with a
        single observation contribute nothing.
    """
    total = 0.0
    for observed in group_prices_by_product(prices).values():
        if len(observed) > 1:
            total += max(observed) - min(observed)
    return total
