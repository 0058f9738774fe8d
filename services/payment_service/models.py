import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Float, Integer, String
from shared.config.database import Base


class PaymentKind(str, enum.Enum):
    CAPTURE = "capture"
    RELEASE = "release"
    TRANSFER = "transfer"
    OVERDUE_CHARGE = "overdue_charge"


class PaymentRecord(Base):
    """Ledger row for every money movement the order engine asks the gateway for."""
    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, index=True)
    buyer_order_id = Column(String(36), nullable=False, index=True)
    order_id = Column(String(36), nullable=True, index=True)
    kind = Column(Enum(PaymentKind, native_enum=False, length=20), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    fee_cents = Column(Integer, nullable=False, default=0)
    external_ref = Column(String(255), nullable=True) # capture/transfer/session id
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class ApplicationFee(Base):
    """Platform fee rate on vendor payouts. Rows are append-only; the newest one applies."""
    __tablename__ = "application_fees"

    id = Column(Integer, primary_key=True, index=True)
    rate = Column(Float, nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
