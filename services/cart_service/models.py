from sqlalchemy import Column, DateTime, Integer, UniqueConstraint
from sqlalchemy.sql import func
from shared.config.database import Base


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("buyer_id", "product_id", name="uq_cart_buyer_product"),)

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    vendor_id = Column(Integer, nullable=False)
    duration_days = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
