from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from shared.config.database import Base


class User(Base):
    """Identity record. Profile management lives elsewhere; this core only reads it."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="buyer") # buyer, vendor
    rating = Column(Float, nullable=False, default=0.0)
    is_account_active = Column(Boolean, default=True, nullable=False)
    payout_account = Column(String(255), nullable=True) # Stripe connected account (acct_...)

    address_line1 = Column(String(100), nullable=True)
    address_line2 = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True) # the reviewed user
    reviewer_id = Column(Integer, nullable=False)
    rating = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
