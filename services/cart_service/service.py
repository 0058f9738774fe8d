import hashlib

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.order_service.repository import OrderRepository
from services.payment_service.gateway import PaymentGateway, PaymentGatewayError
from services.product_service.repository import ProductRepository
from services.user_service.repository import ReviewRepository, UserRepository
from shared.config.settings import TOP_REVIEW_RATING
from shared.errors import (
    CartEntryNotFoundError,
    EmptyCartError,
    InternalError,
    MarketplaceError,
    ProductAlreadyInCartError,
    ProductNotFoundError,
    ProductUnavailableError,
    ServiceUnavailableError,
    UserNotFoundError,
)

from .eligibility import DEFAULT_POLICY, EligibilityPolicy, TrustSnapshot, check_eligibility
from .models import CartItem
from .repository import CartRepository

logger = structlog.get_logger(__name__)


async def build_trust_snapshot(db: AsyncSession, buyer_id: int, top_review_rating: int = TOP_REVIEW_RATING) -> TrustSnapshot:
    buyer = await UserRepository.get_by_id(db, buyer_id)
    if not buyer:
        raise UserNotFoundError()
    return TrustSnapshot(
        completed_orders=await OrderRepository.count_completed_for_buyer(db, buyer_id),
        average_rating=buyer.rating or 0.0,
        top_reviews=await ReviewRepository.count_with_min_rating(db, buyer_id, top_review_rating),
        is_account_active=buyer.is_account_active,
    )


def checkout_idempotency_key(buyer_id: int, items: list[CartItem], shipping_cents: int) -> str:
    """Same buyer, same cart lines and same shipping always map to the same hold."""
    lines = sorted((item.product_id, item.duration_days, item.price_cents) for item in items)
    fingerprint = ";".join(f"{p}:{d}:{c}" for p, d, c in lines) + f"|{shipping_cents}"
    digest = hashlib.sha256(fingerprint.encode()).hexdigest()[:32]
    return f"authorize-{buyer_id}-{digest}"


class CartService:
    def __init__(self, policy: EligibilityPolicy = DEFAULT_POLICY):
        self.policy = policy

    async def add_to_cart(self, db: AsyncSession, buyer_id: int, product_id: int, duration_days: int) -> CartItem:
        try:
            product = await ProductRepository.get_product_by_id(db, product_id)
            if not product:
                raise ProductNotFoundError()
            if not product.is_available:
                raise ProductUnavailableError()

            if await CartRepository.get_item(db, buyer_id, product_id):
                raise ProductAlreadyInCartError()

            trust = await build_trust_snapshot(db, buyer_id)
            tier = check_eligibility(trust, duration_days, product.price_cents, self.policy)

            item = CartItem(
                buyer_id=buyer_id,
                product_id=product.id,
                vendor_id=product.vendor_id,
                duration_days=duration_days,
                price_cents=product.price_cents,
            )
            item = await CartRepository.add_item(db, item)
            logger.info(
                "cart_item_added",
                buyer_id=buyer_id,
                product_id=product_id,
                duration_days=duration_days,
                tier=tier.value,
            )
            return item
        except MarketplaceError:
            await db.rollback()
            raise
        except IntegrityError as e:
            # Lost a race against a parallel add of the same product
            await db.rollback()
            raise ProductAlreadyInCartError() from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("cart_add_failed", buyer_id=buyer_id, product_id=product_id, error=str(e))
            raise InternalError("Failed to add product to cart") from e

    async def remove_from_cart(self, db: AsyncSession, buyer_id: int, product_id: int) -> None:
        try:
            removed = await CartRepository.remove_item(db, buyer_id, product_id)
        except SQLAlchemyError as e:
            await db.rollback()
            raise InternalError("Failed to remove product from cart") from e
        if not removed:
            raise CartEntryNotFoundError()

    async def get_cart(self, db: AsyncSession, buyer_id: int) -> list[CartItem]:
        """Returns cart lines oldest first, pruning lines whose product is gone or rented."""
        try:
            items = await CartRepository.get_items(db, buyer_id)
            valid = []
            for item in items:
                product = await ProductRepository.get_product_by_id(db, item.product_id)
                if not product or not product.is_available:
                    await CartRepository.remove_item(db, buyer_id, item.product_id)
                    logger.info("cart_item_pruned", buyer_id=buyer_id, product_id=item.product_id)
                    continue
                valid.append(item)
            return valid
        except SQLAlchemyError as e:
            await db.rollback()
            raise InternalError("Failed to retrieve cart") from e

    async def start_checkout(
        self, db: AsyncSession, buyer_id: int, shipping_cents: int, gateway: PaymentGateway
    ) -> tuple[str, int]:
        """
        Places the payment hold for the cart total plus shipping. The payment
        webhook later splits the cart into vendor orders against this hold.
        """
        items = await self.get_cart(db, buyer_id)
        if not items:
            raise EmptyCartError()
        total_cents = sum(item.price_cents for item in items) + shipping_cents
        try:
            payment_ref = await gateway.authorize(
                total_cents,
                customer_ref=str(buyer_id),
                shipping_cents=shipping_cents,
                idempotency_key=checkout_idempotency_key(buyer_id, items, shipping_cents),
            )
        except PaymentGatewayError as e:
            logger.error("checkout_authorization_failed", buyer_id=buyer_id, error=str(e))
            raise ServiceUnavailableError("Payment provider is unavailable") from e
        logger.info("checkout_authorized", buyer_id=buyer_id, total_cents=total_cents, lines=len(items))
        return payment_ref, total_cents
