from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import OrderStatus, SettlementOutcome


class CheckoutCompleted(BaseModel):
    """Sent by the payment webhook once the buyer's authorization succeeded."""
    buyer_id: int
    payment_ref: str
    shipping_cents: int = Field(ge=0)
    total_cents: int = Field(gt=0)


class FinePaid(BaseModel):
    session_ref: str


class ShipRequest(BaseModel):
    tracking_number: str = Field(min_length=1, max_length=100)


class SendBackRequest(BaseModel):
    tracking_number: str = Field(min_length=1, max_length=100)


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    duration_days: int
    price_cents: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_number: int
    vendor_id: int
    buyer_id: int
    status: OrderStatus
    duration_days: int
    price_cents: int
    shipping_cents: int
    created_at: datetime
    tracking_number: Optional[str] = None
    return_tracking_number: Optional[str] = None
    received_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    fine_cents: Optional[int] = None
    fine_paid_at: Optional[datetime] = None
    transferred_at: Optional[datetime] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    lines: list[OrderLineResponse] = []


class BuyerOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: int
    price_cents: int
    shipping_cents: int
    created_at: datetime
    is_paid: bool
    settlement_outcome: Optional[SettlementOutcome] = None
    captured_cents: Optional[int] = None
    orders: list[OrderResponse] = []


class SendBackResponse(BaseModel):
    order: OrderResponse
    fine_cents: int = 0
    fine_checkout_url: Optional[str] = None


class ApplicationFeeUpdate(BaseModel):
    rate: float = Field(ge=0, lt=1)


class ApplicationFeeResponse(BaseModel):
    rate: float
