from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from .models import CartItem


class CartRepository:

    @staticmethod
    async def get_items(db: AsyncSession, buyer_id: int):
        result = await db.execute(
            select(CartItem)
            .where(CartItem.buyer_id == buyer_id)
            .order_by(CartItem.created_at, CartItem.id)
        )
        return result.scalars().all()

    @staticmethod
    async def get_item(db: AsyncSession, buyer_id: int, product_id: int):
        result = await db.execute(
            select(CartItem)
            .where(CartItem.buyer_id == buyer_id)
            .where(CartItem.product_id == product_id)
        )
        return result.scalars().first()

    @staticmethod
    async def add_item(db: AsyncSession, item: CartItem):
        db.add(item)
        await db.commit()
        await db.refresh(item)
        return item

    @staticmethod
    async def remove_item(db: AsyncSession, buyer_id: int, product_id: int) -> int:
        stmt = delete(CartItem).where(
            CartItem.buyer_id == buyer_id,
            CartItem.product_id == product_id
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount

    @staticmethod
    async def clear_cart(db: AsyncSession, buyer_id: int):
        """Deletes every line of the buyer's cart. Caller owns the commit (checkout transaction)."""
        await db.execute(delete(CartItem).where(CartItem.buyer_id == buyer_id))
