from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Review, User


class UserRepository:

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalars().first()

    @staticmethod
    async def get_by_ids(db: AsyncSession, user_ids) -> dict[int, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        result = await db.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}

    @staticmethod
    async def get_payout_account(db: AsyncSession, vendor_id: int) -> Optional[str]:
        result = await db.execute(select(User.payout_account).where(User.id == vendor_id))
        return result.scalar_one_or_none()


class ReviewRepository:

    @staticmethod
    async def count_with_min_rating(db: AsyncSession, user_id: int, min_rating: int) -> int:
        result = await db.execute(
            select(func.count(Review.id))
            .where(Review.user_id == user_id)
            .where(Review.rating >= min_rating)
        )
        return result.scalar_one()
