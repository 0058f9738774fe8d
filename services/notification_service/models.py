import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Integer, String

from shared.config.database import Base


class NotificationType(str, enum.Enum):
    ORDER_REJECTION = "Order rejection"
    SHIPPING_UPDATES = "Shipping updates"
    RETURNED_REMINDER = "Returned reminder"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    type = Column(Enum(NotificationType, native_enum=False, length=32), nullable=False)
    order_number = Column(Integer, nullable=True)
    shipping_status = Column(String(20), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
