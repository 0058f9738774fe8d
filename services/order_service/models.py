import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from shared.config.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    NEW_ORDER = "New order"
    SENT = "Sent"
    RECEIVED = "Received"
    OVERDUE = "Overdue"
    SENT_BACK = "Sent back"
    RETURNED = "Returned"
    REJECTED = "Rejected"


class SettlementOutcome(str, enum.Enum):
    CAPTURED = "captured"
    RELEASED = "released"
    PARTIALLY_CAPTURED = "partially_captured"


class BuyerOrder(Base):
    """One checkout: a single payment authorization covering every vendor order."""
    __tablename__ = "buyer_orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    buyer_id = Column(Integer, nullable=False, index=True)
    price_cents = Column(Integer, nullable=False) # sum of children price + shipping
    shipping_cents = Column(Integer, nullable=False)
    payment_ref = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_paid = Column(Boolean, nullable=False, default=False)

    # Written once by the settlement coordinator
    settlement_outcome = Column(Enum(SettlementOutcome, native_enum=False, length=32), nullable=True)
    captured_cents = Column(Integer, nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    orders = relationship(
        "Order",
        back_populates="buyer_order",
        cascade="all, delete-orphan",
        order_by="Order.position",
        lazy="selectin",
    )


class Order(Base):
    """One vendor's share of a checkout, with its own shipping/return lifecycle."""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(Integer, nullable=False, unique=True, index=True) # human facing
    buyer_order_id = Column(
        String(36), ForeignKey("buyer_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    vendor_id = Column(Integer, nullable=False, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, native_enum=False, length=20),
        nullable=False,
        default=OrderStatus.NEW_ORDER,
        index=True,
    )
    duration_days = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
    shipping_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Status-linked fields
    tracking_number = Column(String(100), nullable=True)
    return_tracking_number = Column(String(100), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(20), nullable=True) # buyer, vendor
    rejection_reason = Column(String(500), nullable=True)
    fine_cents = Column(Integer, nullable=True)
    fine_session_ref = Column(String(255), nullable=True, unique=True)
    fine_paid_at = Column(DateTime(timezone=True), nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    # Shipping address snapshot, copied from the buyer at checkout
    address_line1 = Column(String(100), nullable=True)
    address_line2 = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)

    # Optimistic lock: UPDATEs carry "WHERE version = <loaded>"
    version = Column(Integer, nullable=False)

    buyer_order = relationship("BuyerOrder", back_populates="orders")
    lines = relationship(
        "OrderLine",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def product_ids(self) -> list[int]:
        return [line.product_id for line in self.lines]

    @property
    def total_cents(self) -> int:
        return self.price_cents + self.shipping_cents


class OrderLine(Base):
    """Product reference inside an order, with the price and duration agreed at checkout."""
    __tablename__ = "order_lines"
    __table_args__ = (UniqueConstraint("order_id", "product_id", name="uq_order_line_product"),)

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(Integer, nullable=False)
    duration_days = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
