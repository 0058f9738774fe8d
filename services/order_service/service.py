"""
Buyer and vendor actions on vendor orders.

Every action is one transaction: locate the order among the caller's own
orders, lock the parent buyer order then the order, apply the state machine,
write notification and payment records, re-evaluate settlement where the
transition requires it, commit. Push and mail delivery run after the commit
and can only surface as DeliveryFailedError; they never undo the transition.
"""
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.notification_service.dispatcher import MailSender, NotificationDispatcher
from services.notification_service.models import NotificationType
from services.notification_service.repository import NotificationRepository
from services.payment_service.gateway import CHECKOUT_KIND, OVERDUE_FINE_KIND, CheckoutSession, PaymentGateway
from services.payment_service.models import ApplicationFee, PaymentKind, PaymentRecord
from services.payment_service.repository import PaymentRepository
from services.payment_service.webhooks import CHECKOUT_AUTHORIZED, CHECKOUT_SESSION_COMPLETED
from services.product_service.repository import ProductRepository
from services.user_service.repository import UserRepository
from shared.config.settings import FINE_PER_DAY_CENTS
from shared.errors import (
    ConflictError,
    DeliveryFailedError,
    DuplicateCheckoutError,
    InternalError,
    InvalidWebhookError,
    MarketplaceError,
    OrderNotFoundError,
    ServiceUnavailableError,
    UserNotFoundError,
)
from shared.observability import rentals_order_transitions_total

from .models import BuyerOrder, Order, OrderStatus, utcnow
from .repository import OrderRepository
from .settlement import SettlementCoordinator
from .splitter import CheckoutSplitter
from .state_machine import Actor, OrderEvent, next_status
from .sweeper import compute_fine

logger = structlog.get_logger(__name__)

# Transitions after which the buyer order may have become settleable
SETTLEMENT_EVENTS = frozenset({OrderEvent.REJECT, OrderEvent.SHIP})


@dataclass
class TransitionOutcome:
    order: Order
    notifications: list = field(default_factory=list)
    mails: list = field(default_factory=list)  # (to_email, template, context)
    fine_cents: int = 0
    checkout_session: Optional[CheckoutSession] = None


class OrderService:
    def __init__(
        self,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
        mailer: MailSender,
        settlement: Optional[SettlementCoordinator] = None,
        splitter: Optional[CheckoutSplitter] = None,
        daily_fine_cents: int = FINE_PER_DAY_CENTS,
        clock: Callable = utcnow,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.mailer = mailer
        self.settlement = settlement or SettlementCoordinator(gateway, clock=clock)
        self.splitter = splitter or CheckoutSplitter(clock=clock)
        self.daily_fine_cents = daily_fine_cents
        self.clock = clock

    # --- checkout ---

    async def checkout(
        self, db: AsyncSession, buyer_id: int, shipping_cents: int, total_cents: int, payment_ref: str
    ) -> BuyerOrder:
        return await self.splitter.split_checkout(db, buyer_id, shipping_cents, total_cents, payment_ref)

    # --- payment provider events ---

    async def handle_stripe_event(self, db: AsyncSession, event) -> dict:
        """
        Routes a verified Stripe event. A confirmed checkout hold splits the
        buyer's cart; a completed fine session marks the fine paid. Redelivered
        events are acknowledged without repeating the work.
        """
        obj = event["data"]["object"]
        metadata = obj.get("metadata") or {}
        kind = metadata.get("kind")

        if event.type == CHECKOUT_AUTHORIZED and kind == CHECKOUT_KIND:
            try:
                buyer_id = int(metadata["customer_ref"])
                shipping_cents = int(metadata.get("shipping_cents", 0))
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidWebhookError("Checkout metadata is incomplete") from e
            try:
                buyer_order = await self.checkout(db, buyer_id, shipping_cents, obj["amount"], obj["id"])
            except DuplicateCheckoutError:
                logger.info("webhook_event_already_processed", event_id=event.id, payment_ref=obj["id"])
                return {"status": "duplicate", "event_id": event.id}
            return {"status": "processed", "event_id": event.id, "buyer_order_id": buyer_order.id}

        if event.type == CHECKOUT_SESSION_COMPLETED and kind == OVERDUE_FINE_KIND:
            order = await self.record_fine_payment(db, obj["id"])
            return {"status": "processed", "event_id": event.id, "order_number": order.order_number}

        logger.info("webhook_event_ignored", event_id=event.id, event_type=event.type)
        return {"status": "ignored", "event_id": event.id}

    # --- actions ---

    async def reject_order(
        self, db: AsyncSession, actor_id: int, order_number: int, reason: Optional[str] = None
    ) -> Order:
        order = await OrderRepository.get_for_participant(db, order_number, actor_id)
        if order is None:
            raise OrderNotFoundError()
        actor = Actor.VENDOR if order.vendor_id == actor_id else Actor.BUYER

        async def apply(buyer_order, order, target, outcome):
            order.rejected_by = actor.value
            order.rejection_reason = reason
            await ProductRepository.set_availability(db, order.product_ids, True)
            counterparty = order.buyer_id if actor == Actor.VENDOR else order.vendor_id
            outcome.notifications.append(NotificationRepository.create(
                db, counterparty, NotificationType.ORDER_REJECTION, order.order_number, target.value
            ))

        outcome = await self._transition(db, order, OrderEvent.REJECT, actor, apply)
        return outcome.order

    async def ship_order(self, db: AsyncSession, vendor_id: int, order_number: int, tracking_number: str) -> Order:
        order = await OrderRepository.get_for_vendor(db, order_number, vendor_id)
        if order is None:
            raise OrderNotFoundError()

        async def apply(buyer_order, order, target, outcome):
            order.tracking_number = tracking_number
            self._notify_both(db, order, target, outcome)
            users = await UserRepository.get_by_ids(db, {order.buyer_id})
            buyer = users.get(order.buyer_id)
            if buyer is not None:
                outcome.mails.append((buyer.email, "order-shipped", {
                    "name": buyer.name,
                    "order_number": order.order_number,
                    "tracking_number": tracking_number,
                }))

        outcome = await self._transition(db, order, OrderEvent.SHIP, Actor.VENDOR, apply)
        return outcome.order

    async def receive_order(self, db: AsyncSession, buyer_id: int, order_number: int) -> Order:
        order = await OrderRepository.get_for_buyer(db, order_number, buyer_id)
        if order is None:
            raise OrderNotFoundError()

        async def apply(buyer_order, order, target, outcome):
            order.received_at = self.clock()
            self._notify_both(db, order, target, outcome)
            await self.settlement.pay_vendor(db, buyer_order, order)

        outcome = await self._transition(db, order, OrderEvent.RECEIVE, Actor.BUYER, apply)
        return outcome.order

    async def send_back_order(
        self, db: AsyncSession, buyer_id: int, order_number: int, tracking_number: str
    ) -> TransitionOutcome:
        """
        Buyer ships the item back. An overdue rental first gets its fine
        charged through a separate checkout session returned in the outcome.
        """
        order = await OrderRepository.get_for_buyer(db, order_number, buyer_id)
        if order is None:
            raise OrderNotFoundError()

        async def apply(buyer_order, order, target, outcome):
            users = await UserRepository.get_by_ids(db, {order.buyer_id, order.vendor_id})
            if order.status == OrderStatus.OVERDUE:
                await self._charge_fine(db, buyer_order, order, users.get(order.buyer_id), outcome)
            order.return_tracking_number = tracking_number
            self._notify_both(db, order, target, outcome)
            vendor = users.get(order.vendor_id)
            if vendor is not None:
                outcome.mails.append((vendor.email, "order-sent-back", {
                    "name": vendor.name,
                    "order_number": order.order_number,
                    "tracking_number": tracking_number,
                }))

        return await self._transition(db, order, OrderEvent.SEND_BACK, Actor.BUYER, apply)

    async def confirm_return(self, db: AsyncSession, vendor_id: int, order_number: int) -> Order:
        order = await OrderRepository.get_for_vendor(db, order_number, vendor_id)
        if order is None:
            raise OrderNotFoundError()

        async def apply(buyer_order, order, target, outcome):
            await ProductRepository.set_availability(db, order.product_ids, True)
            self._notify_both(db, order, target, outcome)

        outcome = await self._transition(db, order, OrderEvent.CONFIRM_RETURN, Actor.VENDOR, apply)
        return outcome.order

    async def record_fine_payment(self, db: AsyncSession, session_ref: str) -> Order:
        """Marks an overdue fine as paid once its checkout session completes. Idempotent."""
        async def work():
            order = await OrderRepository.lock_by_fine_session(db, session_ref)
            if order is None:
                raise OrderNotFoundError()
            if order.fine_paid_at is None:
                order.fine_paid_at = self.clock()
                logger.info("overdue_fine_paid", order_number=order.order_number, fine_cents=order.fine_cents)
            return order

        return await self._transact(db, work, action="record_fine_payment")

    # --- platform fee ---

    async def get_application_fee(self, db: AsyncSession) -> float:
        return await self.settlement.current_fee_rate(db)

    async def update_application_fee(self, db: AsyncSession, rate: float) -> float:
        """Applies to vendor payouts made from now on; past transfers keep their fee."""
        async def work():
            PaymentRepository.add_fee(db, ApplicationFee(rate=rate))
            return rate

        await self._transact(db, work, action="update_application_fee")
        logger.info("application_fee_updated", rate=rate)
        return rate

    # --- reads ---

    async def get_order(self, db: AsyncSession, user_id: int, order_number: int) -> Order:
        order = await OrderRepository.get_for_participant(db, order_number, user_id)
        if order is None:
            raise OrderNotFoundError()
        return order

    async def list_vendor_orders(self, db: AsyncSession, vendor_id: int) -> list[Order]:
        if await UserRepository.get_by_id(db, vendor_id) is None:
            raise UserNotFoundError()
        return await OrderRepository.list_by_vendor(db, vendor_id)

    async def list_buyer_orders(self, db: AsyncSession, buyer_id: int) -> list[BuyerOrder]:
        if await UserRepository.get_by_id(db, buyer_id) is None:
            raise UserNotFoundError()
        return await OrderRepository.list_buyer_orders(db, buyer_id)

    async def count_orders_by_status(self, db: AsyncSession, vendor_id: int) -> dict[str, int]:
        counts = await OrderRepository.count_by_status(db, vendor_id)
        return {status.value: counts.get(status, 0) for status in OrderStatus}

    # --- internals ---

    def _notify_both(self, db: AsyncSession, order: Order, target: OrderStatus, outcome: TransitionOutcome):
        for user_id in (order.buyer_id, order.vendor_id):
            outcome.notifications.append(NotificationRepository.create(
                db, user_id, NotificationType.SHIPPING_UPDATES, order.order_number, target.value
            ))

    async def _charge_fine(self, db, buyer_order: BuyerOrder, order: Order, buyer, outcome: TransitionOutcome):
        fine = compute_fine(order, self.clock(), self.daily_fine_cents)
        order.fine_cents = fine
        outcome.fine_cents = fine
        if fine <= 0:
            return
        if buyer is None:
            raise UserNotFoundError()
        vendor_account = await UserRepository.get_payout_account(db, order.vendor_id)
        session = await self.gateway.create_overdue_charge(buyer.email, vendor_account, order.order_number, fine)
        order.fine_session_ref = session.id
        outcome.checkout_session = session
        PaymentRepository.record(db, PaymentRecord(
            buyer_order_id=buyer_order.id,
            order_id=order.id,
            kind=PaymentKind.OVERDUE_CHARGE,
            amount_cents=fine,
            external_ref=session.id,
        ))
        logger.info("overdue_fine_charged", order_number=order.order_number, fine_cents=fine)

    async def _lock(self, db: AsyncSession, order: Order) -> tuple[BuyerOrder, Order]:
        # Fixed lock order: buyer order first, then the vendor order
        buyer_order = await OrderRepository.lock_buyer_order(db, order.buyer_order_id)
        locked = await OrderRepository.lock_order(db, order.id)
        if buyer_order is None or locked is None:
            raise OrderNotFoundError()
        return buyer_order, locked

    async def _transact(self, db: AsyncSession, work, **log_context):
        try:
            result = await work()
            await db.commit()
            return result
        except MarketplaceError:
            await db.rollback()
            raise
        except StaleDataError as e:
            await db.rollback()
            logger.warning("order_concurrent_update", **log_context)
            raise ConflictError("Order was updated concurrently, please retry") from e
        except Exception as e:
            await db.rollback()
            logger.error("order_action_failed", error=str(e), error_type=type(e).__name__, **log_context)
            raise InternalError("Failed to update order") from e

    async def _transition(self, db: AsyncSession, order: Order, event: OrderEvent, actor: Actor, apply) -> TransitionOutcome:
        order_number = order.order_number

        async def work():
            buyer_order, locked = await self._lock(db, order)
            target = next_status(locked.status, event, actor)
            outcome = TransitionOutcome(order=locked)
            await apply(buyer_order, locked, target, outcome)
            locked.status = target
            if event in SETTLEMENT_EVENTS:
                await self.settlement.evaluate(db, buyer_order.id)
            return outcome

        with structlog.contextvars.bound_contextvars(order_number=order_number, event=event.value):
            outcome = await self._transact(db, work, action=event.value)
            rentals_order_transitions_total.labels(event=event.value, to_status=outcome.order.status.value).inc()
            logger.info("order_transitioned", actor=actor.value, to_status=outcome.order.status.value)
            await self._deliver(outcome)
        return outcome

    async def _deliver(self, outcome: TransitionOutcome) -> None:
        failed = 0
        for notification in outcome.notifications:
            try:
                await self.dispatcher.deliver(notification)
            except ServiceUnavailableError:
                failed += 1
        for to_email, template, context in outcome.mails:
            if not await self.mailer.send(to_email, template, context):
                failed += 1
        if failed:
            logger.warning("transition_delivery_incomplete", failed=failed)
            raise DeliveryFailedError(result=outcome)
