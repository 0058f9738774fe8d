"""
Settlement of a buyer order's single payment authorization.

A checkout holds one authorization for every vendor order in it. Once no
vendor order is still waiting for the vendor's decision, the hold is either
captured in full (everything shipped), released (everything rejected) or
captured partially: only the price + shipping of the shipped orders, the
rest being released by the provider's partial-capture semantics.
"""
import enum
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.payment_service.gateway import PaymentGateway
from services.payment_service.models import PaymentKind, PaymentRecord
from services.payment_service.repository import PaymentRepository
from services.user_service.repository import UserRepository
from shared.config.settings import APPLICATION_FEE_RATE
from shared.errors import OrderNotFoundError
from shared.observability import rentals_settled_amount_cents, rentals_settlements_total

from .models import BuyerOrder, Order, OrderStatus, SettlementOutcome, utcnow
from .repository import OrderRepository
from .state_machine import IN_BUYER_HANDS, SHIPPED_STATUSES

logger = structlog.get_logger(__name__)


class SiblingState(str, enum.Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SettlementDecision:
    outcome: SettlementOutcome
    capture_cents: int


def sibling_state(order: Order) -> SiblingState:
    if order.status == OrderStatus.REJECTED:
        return SiblingState.REJECTED
    if order.status in SHIPPED_STATUSES:
        return SiblingState.SHIPPED
    return SiblingState.PENDING


def decide(buyer_order: BuyerOrder, siblings: list[Order]) -> Optional[SettlementDecision]:
    """Pure decision over the sibling set. None while any vendor is still deciding."""
    states = [sibling_state(order) for order in siblings]
    if not states or SiblingState.PENDING in states:
        return None
    if all(state == SiblingState.SHIPPED for state in states):
        return SettlementDecision(SettlementOutcome.CAPTURED, buyer_order.price_cents)
    if all(state == SiblingState.REJECTED for state in states):
        return SettlementDecision(SettlementOutcome.RELEASED, 0)
    shipped_total = sum(
        order.total_cents for order, state in zip(siblings, states) if state == SiblingState.SHIPPED
    )
    return SettlementDecision(SettlementOutcome.PARTIALLY_CAPTURED, shipped_total)


def platform_fee(order: Order, fee_rate: float) -> int:
    # Fee applies to the rental price only; shipping passes through to the vendor
    return int(round(order.price_cents * fee_rate))


class SettlementCoordinator:
    def __init__(
        self,
        gateway: PaymentGateway,
        fee_rate: float = APPLICATION_FEE_RATE,  # used until a rate is stored
        clock: Callable = utcnow,
    ):
        self.gateway = gateway
        self.fee_rate = fee_rate
        self.clock = clock

    async def current_fee_rate(self, db: AsyncSession) -> float:
        stored = await PaymentRepository.get_fee_rate(db)
        return self.fee_rate if stored is None else stored

    async def evaluate(self, db: AsyncSession, buyer_order_id: str) -> Optional[SettlementDecision]:
        """
        Runs inside the caller's transaction. Applies the settlement at most
        once: a buyer order with settled_at set is left alone.
        """
        buyer_order = await OrderRepository.lock_buyer_order(db, buyer_order_id)
        if buyer_order is None:
            raise OrderNotFoundError()
        if buyer_order.settled_at is not None:
            logger.debug("settlement_already_applied", buyer_order_id=buyer_order_id)
            return None

        siblings = await OrderRepository.lock_siblings(db, buyer_order_id)
        decision = decide(buyer_order, siblings)
        if decision is None:
            logger.debug("settlement_pending", buyer_order_id=buyer_order_id)
            return None

        idempotency_key = f"settle-{buyer_order.id}"
        if decision.outcome == SettlementOutcome.RELEASED:
            external_ref = await self.gateway.release(buyer_order.payment_ref, idempotency_key=idempotency_key)
            kind = PaymentKind.RELEASE
            amount = buyer_order.price_cents
        else:
            external_ref = await self.gateway.capture(
                buyer_order.payment_ref, decision.capture_cents, idempotency_key=idempotency_key
            )
            kind = PaymentKind.CAPTURE
            amount = decision.capture_cents

        PaymentRepository.record(db, PaymentRecord(
            buyer_order_id=buyer_order.id,
            kind=kind,
            amount_cents=amount,
            external_ref=external_ref,
        ))
        buyer_order.settlement_outcome = decision.outcome
        buyer_order.captured_cents = decision.capture_cents
        buyer_order.is_paid = decision.capture_cents > 0
        buyer_order.settled_at = self.clock()

        rentals_settlements_total.labels(outcome=decision.outcome.value).inc()
        rentals_settled_amount_cents.inc(decision.capture_cents)
        logger.info(
            "buyer_order_settled",
            buyer_order_id=buyer_order.id,
            outcome=decision.outcome.value,
            captured_cents=decision.capture_cents,
            authorized_cents=buyer_order.price_cents,
        )

        # Buyers may already hold parcels from vendors that shipped early
        for order in siblings:
            if order.status in IN_BUYER_HANDS:
                await self.pay_vendor(db, buyer_order, order)

        return decision

    async def pay_vendor(self, db: AsyncSession, buyer_order: BuyerOrder, order: Order) -> bool:
        """
        Transfers the vendor's share for a received order. Deferred (returns
        False) until the buyer order's funds are captured.
        """
        if order.transferred_at is not None:
            return True
        if buyer_order.settled_at is None or not buyer_order.is_paid:
            logger.info("vendor_transfer_deferred", order_number=order.order_number)
            return False

        account = await UserRepository.get_payout_account(db, order.vendor_id)
        if not account:
            logger.warning(
                "vendor_transfer_pending_no_account",
                order_number=order.order_number,
                vendor_id=order.vendor_id,
            )
            return False

        fee = platform_fee(order, await self.current_fee_rate(db))
        transfer_ref = await self.gateway.transfer_to_vendor(
            account,
            buyer_order.payment_ref,
            order.total_cents,
            fee,
            idempotency_key=f"transfer-{order.id}",
        )
        PaymentRepository.record(db, PaymentRecord(
            buyer_order_id=buyer_order.id,
            order_id=order.id,
            kind=PaymentKind.TRANSFER,
            amount_cents=order.total_cents,
            fee_cents=fee,
            external_ref=transfer_ref,
        ))
        order.transferred_at = self.clock()
        return True
