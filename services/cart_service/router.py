"""
Cart routes act on the authenticated buyer's own cart (JWT subject).
"""
from functools import lru_cache

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from services.order_service.dependencies import get_payment_gateway
from services.payment_service.gateway import PaymentGateway
from shared.config.database import get_db
from shared.security.dependencies import get_current_user

from .schemas import CartItemCreate, CartItemResponse, CheckoutAuthorization, CheckoutStart
from .service import CartService

router = APIRouter(tags=["Cart"])
public_router = APIRouter()  # For any public endpoints (e.g. health check)


@lru_cache
def get_cart_service() -> CartService:
    return CartService()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "cart", "status": "running"}


@router.get("/", response_model=list[CartItemResponse])
async def get_cart(
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
):
    return await service.get_cart(db, user_id)


@router.post(
    "/items",
    response_model=CartItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a rental to the cart after the eligibility check",
)
async def add_item(
    item: CartItemCreate,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
):
    return await service.add_to_cart(db, user_id, item.product_id, item.duration_days)


@router.delete("/items/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_item(
    product_id: int,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
):
    await service.remove_from_cart(db, user_id, product_id)


@router.post("/checkout", response_model=CheckoutAuthorization)
async def start_checkout(
    payload: CheckoutStart,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CartService = Depends(get_cart_service),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    payment_ref, total_cents = await service.start_checkout(db, user_id, payload.shipping_cents, gateway)
    return CheckoutAuthorization(payment_ref=payment_ref, total_cents=total_cents)
