from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import relationship
from .base import Base


class FlashSale(Base):
    __tablename__ = "flash_sale"

    id = Column(String(36), primary_key=True)
    product_id = Column(String(36), ForeignKey("product.id"), nullable=False, index=True)
    sale_price = Column(Numeric(12, 2), nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)
    banner_text = Column(String(255), nullable=False, default="Flash Sale!")
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    product = relationship("Product", lazy="joined")
