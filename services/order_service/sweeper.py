"""
Overdue sweep.

A background task that periodically scans RECEIVED rentals, promotes the
ones past their due date to OVERDUE and reminds buyers whose rental is about
to end. Each order is handled in its own transaction under a row lock plus
the optimistic version check, so a buyer sending the item back mid-sweep is
never overwritten by a stale promotion. A failure on one order is logged and
the scan moves on.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from sqlalchemy.orm.exc import StaleDataError

from services.notification_service.dispatcher import NotificationDispatcher
from services.notification_service.models import NotificationType
from services.notification_service.repository import NotificationRepository
from shared.config.settings import FINE_PER_DAY_CENTS, REMINDER_WINDOW_HOURS, SWEEP_INTERVAL_SECONDS
from shared.errors import ServiceUnavailableError
from shared.observability import (
    rentals_order_transitions_total,
    rentals_overdue_promotions_total,
    rentals_sweep_duration_seconds,
    rentals_sweep_failures_total,
)

from .models import Order, OrderStatus, utcnow
from .repository import OrderRepository
from .state_machine import Actor, OrderEvent, next_status

logger = structlog.get_logger(__name__)

ONE_DAY = timedelta(days=1)


def ensure_utc(value: datetime) -> datetime:
    # Some backends (SQLite) hand timestamps back without tzinfo; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def due_date(received_at: datetime, duration_days: int) -> datetime:
    return ensure_utc(received_at) + timedelta(days=duration_days)


def overdue_days(now: datetime, due: datetime) -> int:
    """Whole days past the due date, never negative."""
    return max(0, (ensure_utc(now) - ensure_utc(due)) // ONE_DAY)


def compute_fine(order: Order, now: datetime, daily_fine_cents: int = FINE_PER_DAY_CENTS) -> int:
    if order.received_at is None:
        return 0
    return overdue_days(now, due_date(order.received_at, order.duration_days)) * daily_fine_cents


@dataclass
class SweepReport:
    scanned: int = 0
    promoted: int = 0
    reminded: int = 0
    failed: int = 0


class OverdueSweeper:
    def __init__(
        self,
        session_factory,
        dispatcher: Optional[NotificationDispatcher] = None,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        reminder_window: timedelta = timedelta(hours=REMINDER_WINDOW_HOURS),
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.reminder_window = reminder_window
        self.clock = clock
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = ensure_utc(now or self.clock())
        report = SweepReport()

        # Candidate scan is a plain read; every order is re-checked under lock below
        async with self.session_factory() as db:
            order_ids = await OrderRepository.list_ids_with_status(db, OrderStatus.RECEIVED)
        report.scanned = len(order_ids)

        for order_id in order_ids:
            try:
                outcome = await self._process(order_id, now)
            except StaleDataError:
                report.failed += 1
                rentals_sweep_failures_total.inc()
                logger.warning("overdue_promotion_conflict", order_id=order_id)
                continue
            except Exception as e:
                report.failed += 1
                rentals_sweep_failures_total.inc()
                logger.error("overdue_sweep_order_failed", order_id=order_id, error=str(e))
                continue
            if outcome == "promoted":
                report.promoted += 1
            elif outcome == "reminded":
                report.reminded += 1

        logger.info(
            "overdue_sweep_completed",
            scanned=report.scanned,
            promoted=report.promoted,
            reminded=report.reminded,
            failed=report.failed,
        )
        return report

    async def _process(self, order_id: str, now: datetime) -> Optional[str]:
        async with self.session_factory() as db:
            try:
                order = await OrderRepository.lock_order(db, order_id)
                # Buyer may have sent it back between the scan and the lock
                if order is None or order.status != OrderStatus.RECEIVED or order.received_at is None:
                    await db.rollback()
                    return None

                due = due_date(order.received_at, order.duration_days)
                if now > due:
                    order.status = next_status(order.status, OrderEvent.MARK_OVERDUE, Actor.SWEEPER)
                    await db.commit()
                    rentals_overdue_promotions_total.inc()
                    rentals_order_transitions_total.labels(
                        event=OrderEvent.MARK_OVERDUE.value, to_status=OrderStatus.OVERDUE.value
                    ).inc()
                    logger.info(
                        "order_marked_overdue",
                        order_number=order.order_number,
                        due_date=due.isoformat(),
                        overdue_days=overdue_days(now, due),
                    )
                    return "promoted"

                if order.reminder_sent_at is None and due - now <= self.reminder_window:
                    notification = NotificationRepository.create(
                        db, order.buyer_id, NotificationType.RETURNED_REMINDER, order.order_number
                    )
                    order.reminder_sent_at = now
                    await db.commit()
                    await self._deliver(notification)
                    return "reminded"

                await db.rollback()
                return None
            except Exception:
                await db.rollback()
                raise

    async def _deliver(self, notification) -> None:
        if self.dispatcher is None:
            return
        try:
            await self.dispatcher.deliver(notification)
        except ServiceUnavailableError:
            # Nobody to report to from a background tick; the record is already stored
            logger.warning("reminder_delivery_failed", notification_id=notification.id)

    async def run(self) -> None:
        """Ticks until stop() is called. A tick is never interrupted mid-scan."""
        logger.info("overdue_sweeper_started", interval_seconds=self.interval_seconds)
        try:
            while not self._stop.is_set():
                started = time.perf_counter()
                try:
                    await self.sweep_once()
                except Exception as e:
                    # Candidate scan failed (e.g. database down); try again next tick
                    logger.error("overdue_sweep_failed", error=str(e))
                finally:
                    rentals_sweep_duration_seconds.observe(time.perf_counter() - started)
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("overdue_sweeper_stopped")

    def start(self) -> asyncio.Task:
        self._stop.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
