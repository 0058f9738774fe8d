"""
Tests for settling a buyer order's payment authorization.
"""
from typing import Any

import pytest

from services.order_service.models import BuyerOrder, Order, OrderStatus, SettlementOutcome
from services.order_service.repository import OrderRepository
from services.order_service.settlement import SettlementCoordinator, decide, platform_fee
from services.payment_service.models import ApplicationFee, PaymentKind
from services.payment_service.repository import PaymentRepository


def _orders(*statuses: OrderStatus, price: int = 1000, shipping: int = 500) -> list[Order]:
    return [Order(status=s, price_cents=price, shipping_cents=shipping) for s in statuses]


class TestDecide:
    """Pure settlement decision over the sibling set."""

    @pytest.mark.unit
    def test_all_sent_captures_full_price(self) -> None:
        buyer_order = BuyerOrder(price_cents=3000)
        decision = decide(buyer_order, _orders(OrderStatus.SENT, OrderStatus.SENT))
        assert decision.outcome == SettlementOutcome.CAPTURED
        assert decision.capture_cents == 3000

    @pytest.mark.unit
    def test_all_rejected_releases(self) -> None:
        buyer_order = BuyerOrder(price_cents=3000)
        decision = decide(buyer_order, _orders(OrderStatus.REJECTED, OrderStatus.REJECTED))
        assert decision.outcome == SettlementOutcome.RELEASED
        assert decision.capture_cents == 0

    @pytest.mark.unit
    def test_mixed_captures_shipped_price_and_shipping(self) -> None:
        buyer_order = BuyerOrder(price_cents=3000)
        decision = decide(buyer_order, _orders(OrderStatus.SENT, OrderStatus.REJECTED))
        assert decision.outcome == SettlementOutcome.PARTIALLY_CAPTURED
        assert decision.capture_cents == 1500

    @pytest.mark.unit
    def test_pending_sibling_defers(self) -> None:
        buyer_order = BuyerOrder(price_cents=3000)
        assert decide(buyer_order, _orders(OrderStatus.SENT, OrderStatus.NEW_ORDER)) is None

    @pytest.mark.unit
    def test_statuses_after_sent_count_as_shipped(self) -> None:
        buyer_order = BuyerOrder(price_cents=4500)
        siblings = _orders(OrderStatus.RECEIVED, OrderStatus.OVERDUE, OrderStatus.RETURNED)
        decision = decide(buyer_order, siblings)
        assert decision.outcome == SettlementOutcome.CAPTURED

    @pytest.mark.unit
    def test_platform_fee_is_on_price_only(self) -> None:
        order = Order(price_cents=5000, shipping_cents=1000)
        assert platform_fee(order, 0.05) == 250


class TestSettlementThroughOrderActions:
    """Settlement triggered by ship/reject on a two-vendor checkout (6000 + 4000)."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_both_vendors_ship_captures_everything(
        self, db: Any, two_vendor_checkout: Any, order_service: Any, gateway: Any
    ) -> None:
        c = two_vendor_checkout
        await order_service.ship_order(db, c.v1.id, c.order_v1.order_number, "TRK-1")
        gateway.capture.assert_not_awaited()

        await order_service.ship_order(db, c.v2.id, c.order_v2.order_number, "TRK-2")

        gateway.capture.assert_awaited_once_with(
            "pi_checkout_1", 10000, idempotency_key=f"settle-{c.buyer_order.id}"
        )
        gateway.release.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_one_ships_one_rejects_captures_shipped_share(
        self, db: Any, two_vendor_checkout: Any, order_service: Any, gateway: Any, reload: Any
    ) -> None:
        c = two_vendor_checkout
        await order_service.ship_order(db, c.v1.id, c.order_v1.order_number, "TRK-1")
        await order_service.reject_order(db, c.v2.id, c.order_v2.order_number, "Item damaged")

        gateway.capture.assert_awaited_once_with(
            "pi_checkout_1", 6000, idempotency_key=f"settle-{c.buyer_order.id}"
        )
        settled = await reload(BuyerOrder, c.buyer_order.id)
        assert settled.settlement_outcome == SettlementOutcome.PARTIALLY_CAPTURED
        assert settled.captured_cents == 6000
        assert settled.is_paid is True
        assert settled.settled_at is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_both_reject_releases_hold(
        self, db: Any, two_vendor_checkout: Any, order_service: Any, gateway: Any, reload: Any
    ) -> None:
        c = two_vendor_checkout
        await order_service.reject_order(db, c.v1.id, c.order_v1.order_number)
        await order_service.reject_order(db, c.buyer.id, c.order_v2.order_number, "Changed my mind")

        gateway.release.assert_awaited_once_with("pi_checkout_1", idempotency_key=f"settle-{c.buyer_order.id}")
        gateway.capture.assert_not_awaited()
        settled = await reload(BuyerOrder, c.buyer_order.id)
        assert settled.settlement_outcome == SettlementOutcome.RELEASED
        assert settled.is_paid is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_evaluating_twice_settles_once(
        self, db: Any, seed: Any, gateway: Any, now: Any
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        buyer_order = await seed.buyer_order(buyer, [
            {"vendor": vendor, "status": OrderStatus.SENT},
            {"vendor": vendor, "status": OrderStatus.SENT},
        ])
        coordinator = SettlementCoordinator(gateway, clock=lambda: now)

        first = await coordinator.evaluate(db, buyer_order.id)
        await db.commit()
        second = await coordinator.evaluate(db, buyer_order.id)
        await db.commit()

        assert first.outcome == SettlementOutcome.CAPTURED
        assert second is None
        assert gateway.capture.await_count == 1
        records = await PaymentRepository.list_for_buyer_order(db, buyer_order.id)
        assert [r.kind for r in records] == [PaymentKind.CAPTURE]


class TestInterleavedSiblings:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sibling_shipped_mid_transition_settles_once(
        self,
        db: Any,
        session_factory: Any,
        two_vendor_checkout: Any,
        order_service: Any,
        gateway: Any,
        reload: Any,
        monkeypatch: Any,
    ) -> None:
        """v2 ships and commits while v1's ship is between its first read and its lock."""
        c = two_vendor_checkout
        buyer_order_id = c.buyer_order.id
        v2_id, v2_number = c.v2.id, c.order_v2.order_number
        real_lock_buyer_order = OrderRepository.lock_buyer_order
        interleaved = []

        async def lock_after_sibling_ships(session, pk):
            if not interleaved:
                interleaved.append(pk)
                async with session_factory() as other:
                    await order_service.ship_order(other, v2_id, v2_number, "TRK-2")
                # The sibling saw v1 still waiting, so nothing is settled yet
                gateway.capture.assert_not_awaited()
            return await real_lock_buyer_order(session, pk)

        monkeypatch.setattr(OrderRepository, "lock_buyer_order", staticmethod(lock_after_sibling_ships))
        await order_service.ship_order(db, c.v1.id, c.order_v1.order_number, "TRK-1")

        gateway.capture.assert_awaited_once_with(
            "pi_checkout_1", 10000, idempotency_key=f"settle-{buyer_order_id}"
        )
        settled = await reload(BuyerOrder, buyer_order_id)
        assert settled.settlement_outcome == SettlementOutcome.CAPTURED
        records = await PaymentRepository.list_for_buyer_order(db, buyer_order_id)
        assert [r.kind for r in records] == [PaymentKind.CAPTURE]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stale_session_does_not_settle_again(
        self, db: Any, session_factory: Any, seed: Any, gateway: Any, now: Any
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor")
        buyer_order = await seed.buyer_order(buyer, [
            {"vendor": vendor, "status": OrderStatus.SENT},
            {"vendor": vendor, "status": OrderStatus.REJECTED},
        ])
        coordinator = SettlementCoordinator(gateway, clock=lambda: now)

        async with session_factory() as stale:
            # Loaded before the other session settles
            assert (await stale.get(BuyerOrder, buyer_order.id)).settled_at is None
            first = await coordinator.evaluate(db, buyer_order.id)
            await db.commit()
            second = await coordinator.evaluate(stale, buyer_order.id)
            await stale.commit()

        assert first.outcome == SettlementOutcome.PARTIALLY_CAPTURED
        assert second is None
        assert gateway.capture.await_count == 1


class TestVendorTransfer:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_transfer_waits_for_capture_then_pays_vendor(
        self, db: Any, two_vendor_checkout: Any, order_service: Any, gateway: Any, reload: Any
    ) -> None:
        """v1 ships and the buyer receives before v2 decides: payout happens at settlement."""
        c = two_vendor_checkout
        await order_service.ship_order(db, c.v1.id, c.order_v1.order_number, "TRK-1")
        await order_service.receive_order(db, c.buyer.id, c.order_v1.order_number)
        gateway.transfer_to_vendor.assert_not_awaited()

        await order_service.ship_order(db, c.v2.id, c.order_v2.order_number, "TRK-2")

        gateway.transfer_to_vendor.assert_awaited_once_with(
            "acct_v1", "pi_checkout_1", 6000, 250, idempotency_key=f"transfer-{c.order_v1.id}"
        )
        assert (await reload(Order, c.order_v1.id)).transferred_at is not None
        assert (await reload(Order, c.order_v2.id)).transferred_at is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_receive_after_settlement_pays_immediately(
        self, db: Any, two_vendor_checkout: Any, order_service: Any, gateway: Any
    ) -> None:
        c = two_vendor_checkout
        await order_service.ship_order(db, c.v1.id, c.order_v1.order_number, "TRK-1")
        await order_service.ship_order(db, c.v2.id, c.order_v2.order_number, "TRK-2")
        gateway.transfer_to_vendor.assert_not_awaited()

        await order_service.receive_order(db, c.buyer.id, c.order_v2.order_number)

        gateway.transfer_to_vendor.assert_awaited_once_with(
            "acct_v2", "pi_checkout_1", 4000, 150, idempotency_key=f"transfer-{c.order_v2.id}"
        )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stored_fee_rate_overrides_default(
        self, db: Any, two_vendor_checkout: Any, order_service: Any, gateway: Any
    ) -> None:
        c = two_vendor_checkout
        await order_service.update_application_fee(db, 0.10)
        await order_service.ship_order(db, c.v1.id, c.order_v1.order_number, "TRK-1")
        await order_service.ship_order(db, c.v2.id, c.order_v2.order_number, "TRK-2")

        await order_service.receive_order(db, c.buyer.id, c.order_v1.order_number)

        gateway.transfer_to_vendor.assert_awaited_once_with(
            "acct_v1", "pi_checkout_1", 6000, 500, idempotency_key=f"transfer-{c.order_v1.id}"
        )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_newest_fee_row_wins(self, db: Any, gateway: Any) -> None:
        coordinator = SettlementCoordinator(gateway, fee_rate=0.05)
        assert await coordinator.current_fee_rate(db) == 0.05

        PaymentRepository.add_fee(db, ApplicationFee(rate=0.08))
        PaymentRepository.add_fee(db, ApplicationFee(rate=0.03))
        await db.commit()

        assert await coordinator.current_fee_rate(db) == 0.03

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_vendor_without_payout_account_stays_pending(
        self, db: Any, seed: Any, gateway: Any, now: Any
    ) -> None:
        buyer = await seed.user()
        vendor = await seed.user(role="vendor", payout_account=None)
        buyer_order = await seed.buyer_order(buyer, [
            {"vendor": vendor, "status": OrderStatus.RECEIVED, "received_at": now},
        ])
        coordinator = SettlementCoordinator(gateway, clock=lambda: now)

        await coordinator.evaluate(db, buyer_order.id)
        await db.commit()

        gateway.capture.assert_awaited_once()
        gateway.transfer_to_vendor.assert_not_awaited()
        assert buyer_order.orders[0].transferred_at is None
