"""ORM models; importing this module registers every table on ``Base.metadata``."""

from .base import Base
from .product import Product
from .flash_sale import FlashSale
from .promotion import Promotion
from .user import User
from .referral import Referral
from .order import Order, OrderItem

__all__ = [
    "Base",
    "Product",
    "FlashSale",
    "Promotion",
    "User",
    "Referral",
    "Order",
    "OrderItem",
]
