from sqlalchemy import Column, DateTime, Integer, String, func
from .base import Base


REFERRAL_PENDING = "PENDING"
REFERRAL_COMPLETED = "COMPLETED"
REFERRAL_REWARDED = "REWARDED"


class Referral(Base):
    __tablename__ = "referral"

    # monotonic; orders referrals sharing a created_at
    id = Column(Integer, primary_key=True, autoincrement=True)
    referrer_id = Column(String(128), nullable=False, index=True)
    # a user can be referred at most once, ever
    referred_user_id = Column(String(128), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=REFERRAL_PENDING)
    discount_percent = Column(Integer, nullable=False, default=15)
    completed_order_id = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    rewarded_at = Column(DateTime, nullable=True)
