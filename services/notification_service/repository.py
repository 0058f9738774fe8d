from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Notification, NotificationType


class NotificationRepository:

    @staticmethod
    def create(
        db: AsyncSession,
        user_id: int,
        type: NotificationType,
        order_number: int | None = None,
        shipping_status: str | None = None,
    ) -> Notification:
        # Written inside the transition's transaction; never read back by the order engine
        notification = Notification(
            user_id=user_id,
            type=type,
            order_number=order_number,
            shipping_status=shipping_status,
        )
        db.add(notification)
        return notification

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: int):
        result = await db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return result.scalars().all()
