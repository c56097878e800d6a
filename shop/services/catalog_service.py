# shop/services/catalog_service.py
"""Stock and price lookups the checkout needs from the catalog."""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.exceptions import ProductNotFoundError, VariantNotFoundError
from shop.models.catalog_models import Product, ProductVariant


async def get_product_variant(db: AsyncSession, product_id: int, variant_id: int) -> tuple[Product, ProductVariant]:
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.is_deleted == False)
    )
    product = result.scalars().first()
    if not product:
        raise ProductNotFoundError(product_id)

    result = await db.execute(
        select(ProductVariant).where(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id,
        )
    )
    variant = result.scalars().first()
    if not variant:
        raise VariantNotFoundError(product_id, variant_id)
    return product, variant


async def adjust_stock(db: AsyncSession, product_id: int, variant_id: int, delta: int) -> bool:
    """
    Atomically add `delta` to a variant's stock.

    Negative deltas only apply while enough stock remains, so the row filter is
    the oversell guard. Returns False when no row matched.
    """
    stmt = (
        update(ProductVariant)
        .where(ProductVariant.id == variant_id, ProductVariant.product_id == product_id)
        .values(stock_quantity=ProductVariant.stock_quantity + delta)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(ProductVariant.stock_quantity >= -delta)
    result = await db.execute(stmt)
    return result.rowcount == 1
