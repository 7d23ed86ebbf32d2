"""Storefront service layer."""

from .catalog_service import CatalogService
from .order_service import OrderService
from .payment_service import PaymentProviderClient, PaymentService
from .promotion_service import PromotionService
from .referral_service import ReferralService

__all__ = [
    "CatalogService",
    "OrderService",
    "PaymentProviderClient",
    "PaymentService",
    "PromotionService",
    "ReferralService",
]
