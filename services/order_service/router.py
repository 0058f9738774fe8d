"""
Buyer and vendor routes authenticate with the JWT bearer; the acting user is
the token subject and can only reach their own orders. Stripe events are
authenticated by their signature; internal webhooks require X-Internal-API-Key.
"""
from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from services.payment_service.webhooks import construct_event
from shared.config.database import get_db
from shared.security.dependencies import get_current_user, verify_internal_api_key

from .dependencies import get_order_service
from .schemas import (
    ApplicationFeeResponse,
    ApplicationFeeUpdate,
    BuyerOrderResponse,
    CheckoutCompleted,
    FinePaid,
    OrderResponse,
    RejectRequest,
    SendBackRequest,
    SendBackResponse,
    ShipRequest,
)
from .service import OrderService

router = APIRouter(tags=["Orders"])
webhook_router = APIRouter(prefix="/webhooks", dependencies=[Depends(verify_internal_api_key)])
stripe_router = APIRouter(prefix="/webhooks")
admin_router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()  # For any public endpoints (e.g. health check)

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


# --- webhooks ---

@stripe_router.post("/stripe", summary="Stripe events: checkout hold confirmed, overdue fine paid")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(default=""),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    event = construct_event(await request.body(), stripe_signature)
    return await service.handle_stripe_event(db, event)


@webhook_router.post(
    "/checkout-completed",
    response_model=BuyerOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Split the buyer's cart into vendor orders after payment authorization",
)
async def checkout_completed(
    payload: CheckoutCompleted,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.checkout(
        db, payload.buyer_id, payload.shipping_cents, payload.total_cents, payload.payment_ref
    )


@webhook_router.post("/fine-paid", response_model=OrderResponse)
async def fine_paid(
    payload: FinePaid,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.record_fine_payment(db, payload.session_ref)


# --- admin ---

@admin_router.get("/application-fee", response_model=ApplicationFeeResponse)
async def get_application_fee(
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return ApplicationFeeResponse(rate=await service.get_application_fee(db))


@admin_router.put("/application-fee", response_model=ApplicationFeeResponse)
async def update_application_fee(
    payload: ApplicationFeeUpdate,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return ApplicationFeeResponse(rate=await service.update_application_fee(db, payload.rate))


# --- reads ---

@router.get("/vendor", response_model=list[OrderResponse], summary="Orders received by the current vendor")
async def list_vendor_orders(
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.list_vendor_orders(db, user_id)


@router.get("/vendor/status-counts", response_model=dict[str, int])
async def vendor_status_counts(
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.count_orders_by_status(db, user_id)


@router.get("/buyer", response_model=list[BuyerOrderResponse], summary="Checkouts placed by the current buyer")
async def list_buyer_orders(
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.list_buyer_orders(db, user_id)


@router.get("/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: int,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.get_order(db, user_id, order_number)


# --- actions ---

@router.post("/{order_number}/reject", response_model=OrderResponse)
async def reject_order(
    order_number: int,
    payload: RejectRequest,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.reject_order(db, user_id, order_number, payload.reason)


@router.post("/{order_number}/ship", response_model=OrderResponse)
async def ship_order(
    order_number: int,
    payload: ShipRequest,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.ship_order(db, user_id, order_number, payload.tracking_number)


@router.post("/{order_number}/receive", response_model=OrderResponse)
async def receive_order(
    order_number: int,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.receive_order(db, user_id, order_number)


@router.post("/{order_number}/send-back", response_model=SendBackResponse)
async def send_back_order(
    order_number: int,
    payload: SendBackRequest,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    outcome = await service.send_back_order(db, user_id, order_number, payload.tracking_number)
    return SendBackResponse(
        order=OrderResponse.model_validate(outcome.order),
        fine_cents=outcome.fine_cents,
        fine_checkout_url=outcome.checkout_session.url if outcome.checkout_session else None,
    )


@router.post("/{order_number}/confirm-return", response_model=OrderResponse)
async def confirm_return(
    order_number: int,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.confirm_return(db, user_id, order_number)
