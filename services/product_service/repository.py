from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from .models import Product


class ProductRepository:

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: int):
        result = await db.execute(select(Product).where(Product.id == product_id))
        return result.scalars().first()

    @staticmethod
    async def lock_products(db: AsyncSession, product_ids) -> dict[int, Product]:
        """Loads products with a row lock so two checkouts cannot rent the same item."""
        ids = set(product_ids)
        if not ids:
            return {}
        result = await db.execute(
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {product.id: product for product in result.scalars().all()}

    @staticmethod
    async def set_availability(db: AsyncSession, product_ids, is_available: bool):
        ids = list(product_ids)
        if not ids:
            return
        await db.execute(
            update(Product)
            .where(Product.id.in_(ids))
            .values(is_available=is_available)
            .execution_options(synchronize_session="fetch")
        )
