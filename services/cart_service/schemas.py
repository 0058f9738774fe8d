from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CartItemCreate(BaseModel):
    product_id: int
    duration_days: int


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    vendor_id: int
    duration_days: int
    price_cents: int
    created_at: Optional[datetime] = None


class CheckoutStart(BaseModel):
    shipping_cents: int = Field(ge=0)


class CheckoutAuthorization(BaseModel):
    payment_ref: str
    total_cents: int
