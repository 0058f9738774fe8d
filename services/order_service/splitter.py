"""
Checkout: turns a buyer's cart into one BuyerOrder holding the payment
authorization, with one Order per vendor.

Everything (orders, product availability, cart deletion) is written in one
transaction; a checkout that fails half way leaves no trace.
"""
import random
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.cart_service.models import CartItem
from services.cart_service.repository import CartRepository
from services.product_service.repository import ProductRepository
from services.user_service.repository import UserRepository
from shared.config.settings import MAX_ORDER_NUMBER, MIN_ORDER_NUMBER
from shared.errors import (
    DuplicateCheckoutError,
    EmptyCartError,
    InternalError,
    MarketplaceError,
    PriceMismatchError,
    ProductNotFoundError,
    ProductUnavailableError,
    StaleCartError,
    UserNotFoundError,
    VendorNotFoundError,
)
from shared.observability import rentals_checkout_total, rentals_orders_created_total

from .models import BuyerOrder, Order, OrderLine, OrderStatus, utcnow
from .repository import OrderRepository

logger = structlog.get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 10


def group_by_vendor(
    items: list[CartItem], vendor_of: Callable[[CartItem], int] = lambda item: item.vendor_id
) -> dict[int, list[CartItem]]:
    """Groups cart lines by vendor, keeping first-seen vendor order."""
    groups: dict[int, list[CartItem]] = {}
    for item in items:
        groups.setdefault(vendor_of(item), []).append(item)
    return groups


def split_shipping(shipping_cents: int, parts: int) -> list[int]:
    """
    Even split of the aggregate shipping across vendor orders. Leftover cents
    go one each to the first orders so the shares always sum to the total.
    """
    if parts <= 0:
        return []
    base, remainder = divmod(shipping_cents, parts)
    return [base + (1 if i < remainder else 0) for i in range(parts)]


class CheckoutSplitter:
    def __init__(
        self,
        clock: Callable = utcnow,
        rng: Optional[random.Random] = None,
        min_order_number: int = MIN_ORDER_NUMBER,
        max_order_number: int = MAX_ORDER_NUMBER,
    ):
        self.clock = clock
        self.rng = rng or random.SystemRandom()
        self.min_order_number = min_order_number
        self.max_order_number = max_order_number

    async def _allocate_order_numbers(self, db: AsyncSession, count: int) -> list[int]:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidates = set()
            while len(candidates) < count:
                candidates.add(self.rng.randint(self.min_order_number, self.max_order_number))
            if not await OrderRepository.order_numbers_taken(db, candidates):
                return list(candidates)
        raise InternalError("Could not allocate order numbers")

    async def split_checkout(
        self,
        db: AsyncSession,
        buyer_id: int,
        shipping_cents: int,
        total_cents: int,
        payment_ref: str,
    ) -> BuyerOrder:
        try:
            if await OrderRepository.get_buyer_order_by_payment_ref(db, payment_ref):
                raise DuplicateCheckoutError()

            buyer = await UserRepository.get_by_id(db, buyer_id)
            if not buyer:
                raise UserNotFoundError()

            items = list(await CartRepository.get_items(db, buyer_id))
            if not items:
                raise EmptyCartError()

            # Re-validate everything the cart references; the cart is only a snapshot
            products = await ProductRepository.lock_products(db, [item.product_id for item in items])
            for item in items:
                product = products.get(item.product_id)
                if product is None:
                    raise ProductNotFoundError()
                if not product.is_available:
                    raise ProductUnavailableError()
                if product.vendor_id != item.vendor_id:
                    raise StaleCartError()
            vendors = await UserRepository.get_by_ids(db, {product.vendor_id for product in products.values()})
            if any(product.vendor_id not in vendors for product in products.values()):
                raise VendorNotFoundError()

            if sum(item.price_cents for item in items) + shipping_cents != total_cents:
                raise PriceMismatchError()

            groups = group_by_vendor(items, lambda item: products[item.product_id].vendor_id)
            shipping_shares = split_shipping(shipping_cents, len(groups))
            order_numbers = await self._allocate_order_numbers(db, len(groups))
            now = self.clock()

            buyer_order = BuyerOrder(
                buyer_id=buyer_id,
                shipping_cents=shipping_cents,
                payment_ref=payment_ref,
                created_at=now,
                is_paid=False,
            )
            for position, (vendor_id, lines) in enumerate(groups.items()):
                buyer_order.orders.append(Order(
                    order_number=order_numbers[position],
                    position=position,
                    vendor_id=vendor_id,
                    buyer_id=buyer_id,
                    status=OrderStatus.NEW_ORDER,
                    # The vendor ships everything together, so the longest rental wins
                    duration_days=max(line.duration_days for line in lines),
                    price_cents=sum(line.price_cents for line in lines),
                    shipping_cents=shipping_shares[position],
                    created_at=now,
                    address_line1=buyer.address_line1,
                    address_line2=buyer.address_line2,
                    country=buyer.country,
                    state=buyer.state,
                    city=buyer.city,
                    lines=[
                        OrderLine(
                            position=line_position,
                            product_id=line.product_id,
                            duration_days=line.duration_days,
                            price_cents=line.price_cents,
                        )
                        for line_position, line in enumerate(lines)
                    ],
                ))
            buyer_order.price_cents = sum(order.total_cents for order in buyer_order.orders)

            OrderRepository.add_buyer_order(db, buyer_order)
            for product in products.values():
                product.is_available = False
            await CartRepository.clear_cart(db, buyer_id)

            await db.commit()
        except MarketplaceError as e:
            await db.rollback()
            rentals_checkout_total.labels(status="failed").inc()
            logger.info("checkout_rejected", buyer_id=buyer_id, payment_ref=payment_ref, reason=e.detail)
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            rentals_checkout_total.labels(status="failed").inc()
            logger.error("checkout_failed", buyer_id=buyer_id, payment_ref=payment_ref, error=str(e))
            raise InternalError("Failed to create orders") from e

        rentals_checkout_total.labels(status="success").inc()
        rentals_orders_created_total.inc(len(buyer_order.orders))
        logger.info(
            "checkout_split",
            buyer_id=buyer_id,
            buyer_order_id=buyer_order.id,
            vendor_orders=len(buyer_order.orders),
            price_cents=buyer_order.price_cents,
        )
        return buyer_order
