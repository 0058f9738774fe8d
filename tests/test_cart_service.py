"""
Tests for the cart: eligibility on add, pruning, checkout authorization.
"""
from typing import Any

import pytest

from services.cart_service.service import CartService, build_trust_snapshot, checkout_idempotency_key
from services.order_service.models import OrderStatus
from services.payment_service.gateway import PaymentErrorType, PaymentGatewayError
from shared.errors import (
    AccountDeactivatedError,
    CartEntryNotFoundError,
    EmptyCartError,
    ExtendedPrivilegesRequiredError,
    IneligibleDurationError,
    ProductAlreadyInCartError,
    ProductNotFoundError,
    ProductUnavailableError,
    ServiceUnavailableError,
    UserNotFoundError,
)


@pytest.fixture
def cart_service() -> CartService:
    return CartService()


async def _trusted_buyer(seed: Any):
    """Buyer with one completed rental and a 4.8 rating: standard tier."""
    buyer = await seed.user(rating=4.8)
    vendor = await seed.user(role="vendor")
    await seed.buyer_order(buyer, [{"vendor": vendor, "status": OrderStatus.RETURNED}])
    return buyer, vendor


class TestTrustSnapshot:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_counts_returned_orders_and_top_reviews(self, db: Any, seed: Any) -> None:
        buyer, vendor = await _trusted_buyer(seed)
        await seed.buyer_order(buyer, [{"vendor": vendor, "status": OrderStatus.SENT}])
        await seed.review(buyer, 5)
        await seed.review(buyer, 4)

        trust = await build_trust_snapshot(db, buyer.id)

        assert trust.completed_orders == 1
        assert trust.top_reviews == 1
        assert trust.average_rating == 4.8
        assert trust.is_account_active is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_buyer(self, db: Any) -> None:
        with pytest.raises(UserNotFoundError):
            await build_trust_snapshot(db, 777)


class TestAddToCart:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_buyer_adds_short_rental(self, db: Any, seed: Any, cart_service: CartService) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        product = await seed.product(vendor, 4500)

        item = await cart_service.add_to_cart(db, buyer.id, product.id, 5)

        assert (item.vendor_id, item.duration_days, item.price_cents) == (vendor.id, 5, 4500)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_buyer_cannot_rent_for_fourteen_days(
        self, db: Any, seed: Any, cart_service: CartService
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        product = await seed.product(vendor, 1000)
        buyer_id = buyer.id

        with pytest.raises(IneligibleDurationError):
            await cart_service.add_to_cart(db, buyer_id, product.id, 14)
        assert await cart_service.get_cart(db, buyer_id) == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_standard_buyer_long_rental_needs_extended_tier(
        self, db: Any, seed: Any, cart_service: CartService
    ) -> None:
        buyer, vendor = await _trusted_buyer(seed)
        product = await seed.product(vendor, 1000)

        await cart_service.add_to_cart(db, buyer.id, product.id, 10)
        other = await seed.product(vendor, 1000)
        with pytest.raises(ExtendedPrivilegesRequiredError):
            await cart_service.add_to_cart(db, buyer.id, other.id, 14)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_extended_buyer_long_rental_is_allowed(
        self, db: Any, seed: Any, cart_service: CartService
    ) -> None:
        buyer, vendor = await _trusted_buyer(seed)
        for _ in range(5):
            await seed.review(buyer, 5)
        product = await seed.product(vendor, 90000)

        await cart_service.add_to_cart(db, buyer.id, product.id, 21)

        trust = await build_trust_snapshot(db, buyer.id)
        assert trust.top_reviews == 5
        assert [i.product_id for i in await cart_service.get_cart(db, buyer.id)] == [product.id]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_deactivated_buyer_is_rejected(self, db: Any, seed: Any, cart_service: CartService) -> None:
        buyer = await seed.user(is_account_active=False)
        vendor = await seed.user(role="vendor")
        product = await seed.product(vendor, 1000)
        with pytest.raises(AccountDeactivatedError):
            await cart_service.add_to_cart(db, buyer.id, product.id, 2)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_same_product_twice_is_rejected(self, db: Any, seed: Any, cart_service: CartService) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        product = await seed.product(vendor, 1000)

        await cart_service.add_to_cart(db, buyer.id, product.id, 2)
        with pytest.raises(ProductAlreadyInCartError):
            await cart_service.add_to_cart(db, buyer.id, product.id, 3)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_or_rented_product_is_rejected(
        self, db: Any, seed: Any, cart_service: CartService
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        rented = await seed.product(vendor, 1000, is_available=False)
        buyer_id, rented_id = buyer.id, rented.id

        with pytest.raises(ProductNotFoundError):
            await cart_service.add_to_cart(db, buyer_id, 98765, 2)
        with pytest.raises(ProductUnavailableError):
            await cart_service.add_to_cart(db, buyer_id, rented_id, 2)


class TestCartContents:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_cart_prunes_products_rented_by_someone_else(
        self, db: Any, seed: Any, cart_service: CartService
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        kept = await seed.product(vendor, 1000)
        gone = await seed.product(vendor, 2000)
        await seed.cart_line(buyer, kept, 2)
        await seed.cart_line(buyer, gone, 2)
        gone.is_available = False
        await db.commit()

        items = await cart_service.get_cart(db, buyer.id)

        assert [i.product_id for i in items] == [kept.id]
        assert [i.product_id for i in await cart_service.get_cart(db, buyer.id)] == [kept.id]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_remove_missing_entry(self, db: Any, seed: Any, cart_service: CartService) -> None:
        buyer = await seed.user()
        with pytest.raises(CartEntryNotFoundError):
            await cart_service.remove_from_cart(db, buyer.id, 5)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_remove_entry(self, db: Any, seed: Any, cart_service: CartService) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        product = await seed.product(vendor, 1000)
        await seed.cart_line(buyer, product, 2)

        await cart_service.remove_from_cart(db, buyer.id, product.id)

        assert await cart_service.get_cart(db, buyer.id) == []


class TestStartCheckout:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_authorizes_cart_total_plus_shipping(
        self, db: Any, seed: Any, cart_service: CartService, gateway: Any
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        await seed.cart_line(buyer, await seed.product(vendor, 5000), 3)
        await seed.cart_line(buyer, await seed.product(vendor, 3000), 2)

        payment_ref, total = await cart_service.start_checkout(db, buyer.id, 2000, gateway)

        assert (payment_ref, total) == ("pi_test_auth", 10000)
        items = await cart_service.get_cart(db, buyer.id)
        gateway.authorize.assert_awaited_once_with(
            10000,
            customer_ref=str(buyer.id),
            shipping_cents=2000,
            idempotency_key=checkout_idempotency_key(buyer.id, items, 2000),
        )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_retried_checkout_reuses_the_same_hold_key(
        self, db: Any, seed: Any, cart_service: CartService, gateway: Any
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        await seed.cart_line(buyer, await seed.product(vendor, 5000), 3)

        await cart_service.start_checkout(db, buyer.id, 500, gateway)
        await cart_service.start_checkout(db, buyer.id, 500, gateway)
        await cart_service.start_checkout(db, buyer.id, 900, gateway)

        keys = [call.kwargs["idempotency_key"] for call in gateway.authorize.await_args_list]
        assert keys[0] == keys[1]
        assert keys[2] != keys[0]
        assert keys[0].startswith(f"authorize-{buyer.id}-")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_empty_cart_is_not_authorized(
        self, db: Any, seed: Any, cart_service: CartService, gateway: Any
    ) -> None:
        buyer = await seed.user()
        with pytest.raises(EmptyCartError):
            await cart_service.start_checkout(db, buyer.id, 0, gateway)
        gateway.authorize.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_failure_is_service_unavailable(
        self, db: Any, seed: Any, cart_service: CartService, gateway: Any
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        await seed.cart_line(buyer, await seed.product(vendor, 5000), 3)
        gateway.authorize.side_effect = PaymentGatewayError("api down", PaymentErrorType.TRANSIENT)

        with pytest.raises(ServiceUnavailableError):
            await cart_service.start_checkout(db, buyer.id, 0, gateway)
