"""Models package for CartSync."""
from .base import Base
from .price import PriceRecord
from .user import UserRecord
from .catalog import ProductRecord, SupermarketRecord
from .basket import BasketItemRecord, SavedBasketRecord, SavedBasketItemRecord

__all__ = [
    'Base',
    'PriceRecord',
    'UserRecord',
    'ProductRecord',
    'SupermarketRecord',
    'BasketItemRecord',
    'SavedBasketRecord',
    'SavedBasketItemRecord',
]
