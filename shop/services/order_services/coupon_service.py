# shop/services/order_services/coupon_service.py
"""
Coupon ledger: validation, discount pricing, redemption and reversal.

`validate_and_price` never writes. `redeem` and `reverse` only stage changes on
the session; the order service owns the surrounding transaction.
"""
import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.exceptions import (
    CouponLimitError, CouponNotApplicableError, CouponNotFoundError, ValidationError,
)
from shop.models.coupon_models import Coupon, UserCouponUsage, DiscountType
from shop.utils.activity_helpers import log_user_activity
from shop.utils.decimal_utils import to_decimal
from shop.utils.time_utils import utcnow, ensure_aware

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(
    discount_type: DiscountType,
    discount_value,
    subtotal,
    max_discount_amount=None,
) -> Decimal:
    """Discount for a subtotal; never negative and never above the subtotal."""
    subtotal = to_decimal(subtotal)
    value = to_decimal(discount_value)
    if subtotal <= 0 or value <= 0:
        return Decimal("0.00")

    if discount_type == DiscountType.PERCENTAGE:
        discount = to_decimal(subtotal * value / Decimal("100"))
        if max_discount_amount is not None:
            discount = min(discount, to_decimal(max_discount_amount))
    else:
        discount = value
    return min(discount, subtotal)


def _matches_restrictions(coupon: Coupon, lines: Iterable) -> bool:
    products = set(coupon.applicable_products or [])
    categories = set(coupon.applicable_categories or [])
    brands = set(coupon.applicable_brands or [])
    if not (products or categories or brands):
        return True
    for line in lines:
        if line.product_id in products:
            return True
        if line.category_id is not None and line.category_id in categories:
            return True
        if line.brand_id is not None and line.brand_id in brands:
            return True
    return False


async def get_coupon_by_code(db: AsyncSession, code: str) -> Coupon:
    code = normalize_code(code)
    result = await db.execute(select(Coupon).where(Coupon.code == code))
    coupon = result.scalars().first()
    if not coupon:
        raise CouponNotFoundError(code)
    return coupon


async def count_user_usage(db: AsyncSession, coupon_id: int, user_id: int) -> int:
    result = await db.execute(
        select(func.count(UserCouponUsage.id)).where(
            UserCouponUsage.coupon_id == coupon_id,
            UserCouponUsage.user_id == user_id,
        )
    )
    return result.scalar() or 0


async def validate_and_price(
    db: AsyncSession,
    code: str,
    user_id: int,
    subtotal,
    lines: Iterable,
) -> tuple[Coupon, Decimal]:
    """
    Check a coupon against the caller and the priced order lines.

    Checks run in a fixed order and the first failure is raised with its own
    `reason`. Returns the coupon and the discount it grants.
    """
    lines = list(lines)
    subtotal = to_decimal(subtotal)
    coupon = await get_coupon_by_code(db, code)
    now = utcnow()

    if not coupon.is_active:
        raise CouponNotApplicableError("inactive", "Coupon is not active", coupon.code)
    if now < ensure_aware(coupon.start_date):
        raise CouponNotApplicableError("not_started", "Coupon is not valid yet", coupon.code)
    if now > ensure_aware(coupon.end_date):
        raise CouponNotApplicableError("expired", "Coupon has expired", coupon.code)

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise CouponLimitError("usage_limit_reached", "Coupon usage limit reached", coupon.code)

    if coupon.usage_limit_per_user is not None:
        used = await count_user_usage(db, coupon.id, user_id)
        if used >= coupon.usage_limit_per_user:
            raise CouponLimitError("user_limit_reached", "You have already used this coupon", coupon.code)

    if coupon.applicable_users and user_id not in coupon.applicable_users:
        raise CouponNotApplicableError("user_not_eligible", "Coupon is not available for this account", coupon.code)
    if coupon.excluded_users and user_id in coupon.excluded_users:
        raise CouponNotApplicableError("user_excluded", "Coupon is not available for this account", coupon.code)

    if coupon.min_order_value is not None and subtotal < to_decimal(coupon.min_order_value):
        raise CouponNotApplicableError(
            "min_order_not_met",
            f"Order must be at least {to_decimal(coupon.min_order_value)} to use this coupon",
            coupon.code,
        )

    if not _matches_restrictions(coupon, lines):
        raise CouponNotApplicableError("not_applicable", "Coupon does not apply to these items", coupon.code)

    discount = compute_discount(
        coupon.discount_type, coupon.discount_value, subtotal, coupon.max_discount_amount
    )
    return coupon, discount


async def redeem(db: AsyncSession, coupon: Coupon, user_id: int, order_id: int, discount_amount) -> UserCouponUsage:
    """Count one use of the coupon and record it against the order."""
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # another checkout took the last use between validation and commit
        raise CouponLimitError("usage_limit_reached", "Coupon usage limit reached", coupon.code)

    usage = UserCouponUsage(
        user_id=user_id,
        coupon_id=coupon.id,
        order_id=order_id,
        discount_amount=to_decimal(discount_amount),
    )
    db.add(usage)
    await db.flush()

    # the coupon row update above serializes redemptions, so this count sees every committed use
    if coupon.usage_limit_per_user is not None:
        used = await count_user_usage(db, coupon.id, user_id)
        if used > coupon.usage_limit_per_user:
            raise CouponLimitError("user_limit_reached", "You have already used this coupon", coupon.code)

    logger.info("Coupon %s redeemed on order %s by user %s", coupon.code, order_id, user_id)
    return usage


async def reverse(db: AsyncSession, order_id: int) -> bool:
    """Undo the redemption recorded for an order. Returns False when there was none."""
    result = await db.execute(select(UserCouponUsage).where(UserCouponUsage.order_id == order_id))
    usage = result.scalars().first()
    if not usage:
        return False

    await db.execute(
        delete(UserCouponUsage)
        .where(UserCouponUsage.id == usage.id)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Coupon)
        .where(Coupon.id == usage.coupon_id, Coupon.usage_count > 0)
        .values(usage_count=Coupon.usage_count - 1)
        .execution_options(synchronize_session=False)
    )
    db.expunge(usage)
    logger.info("Coupon usage reversed for order %s", order_id)
    return True


# -----------------------
# ADMIN
# -----------------------
async def create_coupon(db: AsyncSession, payload, _user=None) -> Coupon:
    if payload.start_date >= payload.end_date:
        raise ValidationError("Start date must be before end date")

    value = to_decimal(payload.discount_value)
    if payload.discount_type == DiscountType.PERCENTAGE and not (0 < value <= 100):
        raise ValidationError("Percentage discount must be between 0 and 100")
    if payload.discount_type == DiscountType.FIXED_AMOUNT and value <= 0:
        raise ValidationError("Fixed discount must be greater than 0")

    code = normalize_code(payload.code)
    existing = await db.execute(select(Coupon.id).where(Coupon.code == code))
    if existing.scalar_one_or_none() is not None:
        raise ValidationError("Coupon code already exists")

    data = payload.model_dump()
    data["code"] = code
    coupon = Coupon(**data, usage_count=0, created_by=getattr(_user, "id", None))
    db.add(coupon)
    try:
        await db.flush()
        if _user is not None:
            await log_user_activity(db, _user, f"Created coupon '{coupon.code}'")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(coupon)
    return coupon
