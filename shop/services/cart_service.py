# shop/services/cart_service.py
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop.models.cart_models import Cart, CartItem


async def _get_user_cart(db: AsyncSession, user_id: int) -> Cart | None:
    result = await db.execute(select(Cart).where(Cart.user_id == user_id))
    return result.scalars().first()


async def get_cart(db: AsyncSession, user_id: int) -> list[CartItem]:
    cart = await _get_user_cart(db, user_id)
    if not cart:
        return []
    return list(cart.items)


async def clear_cart(db: AsyncSession, user_id: int) -> None:
    cart = await _get_user_cart(db, user_id)
    if cart:
        cart.items.clear()  # delete-orphan cascade removes the rows on flush
        await db.flush()
