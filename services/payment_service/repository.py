from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from .models import ApplicationFee, PaymentRecord


class PaymentRepository:
    @staticmethod
    def record(db: AsyncSession, payment: PaymentRecord) -> PaymentRecord:
        # Part of the caller's transaction; committed together with the order change
        db.add(payment)
        return payment

    @staticmethod
    async def list_for_buyer_order(db: AsyncSession, buyer_order_id: str):
        result = await db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.buyer_order_id == buyer_order_id)
            .order_by(PaymentRecord.id)
        )
        return result.scalars().all()

    # --- application fee ---

    @staticmethod
    async def get_fee_rate(db: AsyncSession) -> Optional[float]:
        result = await db.execute(
            select(ApplicationFee.rate).order_by(ApplicationFee.id.desc()).limit(1)
        )
        return result.scalars().first()

    @staticmethod
    def add_fee(db: AsyncSession, fee: ApplicationFee) -> ApplicationFee:
        db.add(fee)
        return fee
