from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, or_, select
from .models import BuyerOrder, Order, OrderStatus


class OrderRepository:
    """
    Queries for buyer orders and vendor orders. Nothing here commits: the
    service layer owns transaction boundaries.
    """

    # --- locking reads (inside a transaction) ---

    @staticmethod
    async def lock_buyer_order(db: AsyncSession, buyer_order_id: str) -> Optional[BuyerOrder]:
        result = await db.execute(
            select(BuyerOrder)
            .where(BuyerOrder.id == buyer_order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def lock_order(db: AsyncSession, order_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def lock_siblings(db: AsyncSession, buyer_order_id: str) -> list[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.buyer_order_id == buyer_order_id)
            .order_by(Order.position)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def lock_by_fine_session(db: AsyncSession, session_ref: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.fine_session_ref == session_ref)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    # --- participant lookups ---

    @staticmethod
    async def get_for_vendor(db: AsyncSession, order_number: int, vendor_id: int) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .where(Order.vendor_id == vendor_id)
        )
        return result.scalars().first()

    @staticmethod
    async def get_for_buyer(db: AsyncSession, order_number: int, buyer_id: int) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .where(Order.buyer_id == buyer_id)
        )
        return result.scalars().first()

    @staticmethod
    async def get_for_participant(db: AsyncSession, order_number: int, user_id: int) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .where(or_(Order.buyer_id == user_id, Order.vendor_id == user_id))
        )
        return result.scalars().first()

    # --- checkout ---

    @staticmethod
    async def get_buyer_order_by_payment_ref(db: AsyncSession, payment_ref: str) -> Optional[BuyerOrder]:
        result = await db.execute(select(BuyerOrder).where(BuyerOrder.payment_ref == payment_ref))
        return result.scalars().first()

    @staticmethod
    async def order_numbers_taken(db: AsyncSession, numbers) -> set[int]:
        result = await db.execute(select(Order.order_number).where(Order.order_number.in_(list(numbers))))
        return set(result.scalars().all())

    @staticmethod
    def add_buyer_order(db: AsyncSession, buyer_order: BuyerOrder) -> BuyerOrder:
        db.add(buyer_order)
        return buyer_order

    # --- reporting / trust ---

    @staticmethod
    async def count_completed_for_buyer(db: AsyncSession, buyer_id: int) -> int:
        result = await db.execute(
            select(func.count(Order.id))
            .where(Order.buyer_id == buyer_id)
            .where(Order.status == OrderStatus.RETURNED)
        )
        return result.scalar_one()

    @staticmethod
    async def list_by_vendor(db: AsyncSession, vendor_id: int) -> list[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.vendor_id == vendor_id)
            .order_by(Order.created_at.desc(), Order.order_number.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_buyer_orders(db: AsyncSession, buyer_id: int) -> list[BuyerOrder]:
        result = await db.execute(
            select(BuyerOrder)
            .where(BuyerOrder.buyer_id == buyer_id)
            .order_by(BuyerOrder.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def count_by_status(db: AsyncSession, vendor_id: int) -> dict[OrderStatus, int]:
        result = await db.execute(
            select(Order.status, func.count(Order.id))
            .where(Order.vendor_id == vendor_id)
            .group_by(Order.status)
        )
        return {status: count for status, count in result.all()}

    # --- sweeper ---

    @staticmethod
    async def list_ids_with_status(db: AsyncSession, status: OrderStatus) -> list[str]:
        result = await db.execute(select(Order.id).where(Order.status == status).order_by(Order.id))
        return list(result.scalars().all())
