from sqlalchemy import Column, DateTime, String, func
from .base import Base


class User(Base):
    __tablename__ = "user"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True, unique=True)
    name = Column(String(255), nullable=True)
    referral_code = Column(String(16), nullable=True, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
