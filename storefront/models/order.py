from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship
from .base import Base


ORDER_FLOW = ("PENDING", "CONFIRMED", "PROCESSING", "SHIPPED", "DELIVERED")
ORDER_CANCELLED = "CANCELLED"
ORDER_STATUSES = ORDER_FLOW + (ORDER_CANCELLED,)
TERMINAL_STATUSES = ("DELIVERED", ORDER_CANCELLED)

PAYMENT_PENDING = "PENDING"
PAYMENT_SUCCESS = "SUCCESS"


class Order(Base):
    __tablename__ = "order"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(128), nullable=True, index=True)
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(32), nullable=False)
    delivery_address = Column(String(500), nullable=False)
    notes = Column(String(500), nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(12, 2), nullable=False)
    delivery_discount = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_zone = Column(String(16), nullable=False)
    referral_code = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False, default="PENDING")
    payment_status = Column(String(16), nullable=False, default=PAYMENT_PENDING)
    payment_ref = Column(String(64), nullable=True, unique=True)
    provider_transaction_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    paid_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("order.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("product.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_time = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="joined")
