# shop/scripts/seed_demo.py
"""Create an admin, a demo product with variants and a demo coupon, then print an admin token."""
import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from shop.core.db import AsyncSessionLocal, init_models
from shop.core.security import create_access_token
from shop.models import User, Product, ProductVariant, Coupon, DiscountType
from shop.utils.time_utils import utcnow


async def seed_demo():
    await init_models()
    async with AsyncSessionLocal() as session:
        admin = (await session.execute(select(User).where(User.username == "admin"))).scalars().first()
        if not admin:
            admin = User(username="admin", email="admin@example.com", role="admin", is_active=True)
            session.add(admin)

        if not (await session.execute(select(Product).where(Product.slug == "hydrating-serum"))).scalars().first():
            product = Product(name="Hydrating Serum", slug="hydrating-serum", category_id=1, brand_id=1)
            product.variants = [
                ProductVariant(sku="SERUM-30ML", label="30ml", price=Decimal("250000"), stock_quantity=50),
                ProductVariant(sku="SERUM-50ML", label="50ml", price=Decimal("390000"),
                               original_price=Decimal("450000"), stock_quantity=30),
            ]
            session.add(product)

        if not (await session.execute(select(Coupon).where(Coupon.code == "SAVE10"))).scalars().first():
            now = utcnow()
            session.add(Coupon(
                code="SAVE10",
                description="10% off, up to 40,000",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=Decimal("10"),
                max_discount_amount=Decimal("40000"),
                usage_limit=100,
                usage_count=0,
                usage_limit_per_user=1,
                start_date=now,
                end_date=now + timedelta(days=30),
            ))

        await session.commit()
        await session.refresh(admin)
        print("Demo data created!")
        print("Admin token:", create_access_token({"sub": admin.username}, admin.token_version))


if __name__ == "__main__":
    asyncio.run(seed_demo())
