from sqlalchemy import Boolean, Column, Integer, String
from shared.config.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    price_cents = Column(Integer, nullable=False) # rental price for one booking
    # Flipped off when rented at checkout, back on when the order is rejected or returned
    is_available = Column(Boolean, nullable=False, default=True)
