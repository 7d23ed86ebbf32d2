from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text, func
from .base import Base


PROMOTION_TYPES = ("FLASH_SALE", "RAMADAN_DELIVERY", "REFERRAL")


class Promotion(Base):
    __tablename__ = "promotion"

    id = Column(String(36), primary_key=True)
    type = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    discount_percent = Column(Integer, nullable=False)
    min_order_amount = Column(Numeric(12, 2), nullable=False, default=0)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
