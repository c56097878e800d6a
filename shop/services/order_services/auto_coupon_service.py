# shop/services/order_services/auto_coupon_service.py
"""
Milestone rules that mint personal coupons.

`evaluate` is safe to call repeatedly: a user is issued at most one coupon per
rule, enforced by the unique (user_id, rule_id) key on redemptions.
"""
import logging
import random
import string
import time
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.exceptions import RuleNotFoundError, ValidationError
from shop.models.auto_coupon_models import AutoCouponRule, UserCouponRedemption, TriggerType
from shop.models.coupon_models import Coupon, DiscountType
from shop.models.order_models import Order, OrderStatus, PaymentStatus, PaymentMethod
from shop.utils.activity_helpers import log_user_activity
from shop.utils.decimal_utils import to_decimal
from shop.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def _generate_coupon_code(prefix: str) -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    stamp = str(int(time.time() * 1000))[-4:]
    return f"{prefix.upper()}-{suffix}{stamp}"


async def get_user_order_metrics(db: AsyncSession, user_id: int) -> tuple[int, Decimal]:
    """Returns (completed order count, total spent) for a user."""
    completed = or_(
        Order.payment_status == PaymentStatus.PAID,
        and_(Order.status == OrderStatus.DELIVERED, Order.payment_method == PaymentMethod.COD),
    )
    result = await db.execute(
        select(func.count(Order.id)).where(Order.user_id == user_id, completed)
    )
    order_count = result.scalar() or 0

    result = await db.execute(
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.PAID,
        )
    )
    total_spent = to_decimal(result.scalar())
    return order_count, total_spent


def rule_is_met(rule: AutoCouponRule, order_count: int, total_spent: Decimal) -> tuple[bool, Decimal]:
    """Whether the user's metrics satisfy the rule, plus the metric value that was compared."""
    if rule.trigger_type == TriggerType.ORDER_COUNT:
        required = rule.required_order_count or 0
        return required > 0 and order_count >= required, Decimal(order_count)
    if rule.trigger_type == TriggerType.TOTAL_SPENT:
        required = to_decimal(rule.required_total_spent)
        return required > 0 and total_spent >= required, total_spent
    if rule.trigger_type == TriggerType.FIRST_ORDER:
        return order_count == 1, Decimal(order_count)
    return False, Decimal("0")


async def _issue_coupon(db: AsyncSession, rule: AutoCouponRule, user_id: int, trigger_value: Decimal) -> Optional[Coupon]:
    now = utcnow()
    try:
        async with db.begin_nested():
            result = await db.execute(
                update(AutoCouponRule)
                .where(
                    AutoCouponRule.id == rule.id,
                    AutoCouponRule.is_active == True,
                    or_(
                        AutoCouponRule.max_redemptions.is_(None),
                        AutoCouponRule.redemption_count < AutoCouponRule.max_redemptions,
                    ),
                )
                .values(redemption_count=AutoCouponRule.redemption_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            coupon = Coupon(
                code=_generate_coupon_code(rule.code_prefix),
                description=rule.description or f"Reward: {rule.name}",
                discount_type=rule.discount_type,
                discount_value=rule.discount_value,
                max_discount_amount=rule.max_discount_amount,
                min_order_value=rule.min_order_value,
                usage_limit=rule.usage_limit_per_user,
                usage_count=0,
                usage_limit_per_user=rule.usage_limit_per_user,
                applicable_products=rule.applicable_products,
                applicable_categories=rule.applicable_categories,
                applicable_brands=rule.applicable_brands,
                applicable_users=[user_id],
                start_date=now,
                end_date=now + timedelta(days=rule.valid_days),
                is_active=True,
            )
            db.add(coupon)
            await db.flush()

            db.add(UserCouponRedemption(
                user_id=user_id,
                rule_id=rule.id,
                coupon_id=coupon.id,
                trigger_type=rule.trigger_type,
                trigger_value=trigger_value,
            ))
            await db.flush()
    except IntegrityError:
        # a concurrent evaluation redeemed this rule first
        logger.info("Rule %s already redeemed by user %s", rule.id, user_id)
        return None

    logger.info("Auto coupon %s issued to user %s by rule %s", coupon.code, user_id, rule.id)
    return coupon


async def evaluate(db: AsyncSession, user_id: int) -> list[Coupon]:
    """Issue a coupon for every active rule the user newly satisfies. Commits when anything was issued."""
    result = await db.execute(select(AutoCouponRule).where(AutoCouponRule.is_active == True).order_by(AutoCouponRule.id))
    rules = result.scalars().all()
    if not rules:
        return []

    result = await db.execute(
        select(UserCouponRedemption.rule_id).where(UserCouponRedemption.user_id == user_id)
    )
    redeemed = set(result.scalars().all())
    order_count, total_spent = await get_user_order_metrics(db, user_id)

    issued = []
    try:
        for rule in rules:
            if rule.id in redeemed:
                continue
            if rule.max_redemptions is not None and rule.redemption_count >= rule.max_redemptions:
                continue
            met, trigger_value = rule_is_met(rule, order_count, total_spent)
            if not met:
                continue
            coupon = await _issue_coupon(db, rule, user_id, trigger_value)
            if coupon:
                issued.append(coupon)
        if issued:
            await db.commit()
    except Exception:
        await db.rollback()
        raise
    return issued


async def get_user_auto_coupons(db: AsyncSession, user_id: int) -> list[UserCouponRedemption]:
    await evaluate(db, user_id)
    result = await db.execute(
        select(UserCouponRedemption)
        .where(UserCouponRedemption.user_id == user_id)
        .order_by(UserCouponRedemption.triggered_at.desc(), UserCouponRedemption.id.desc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


# -----------------------
# RULE ADMINISTRATION
# -----------------------
def _validate_rule_fields(data: dict):
    trigger = data.get("trigger_type")
    if trigger == TriggerType.ORDER_COUNT and not (data.get("required_order_count") or 0) > 0:
        raise ValidationError("required_order_count must be greater than 0 for order_count rules")
    if trigger == TriggerType.TOTAL_SPENT and not to_decimal(data.get("required_total_spent")) > 0:
        raise ValidationError("required_total_spent must be greater than 0 for total_spent rules")

    value = to_decimal(data.get("discount_value"))
    if data.get("discount_type") == DiscountType.PERCENTAGE and not (0 < value <= 100):
        raise ValidationError("Percentage discount must be between 0 and 100")
    if data.get("discount_type") == DiscountType.FIXED_AMOUNT and value <= 0:
        raise ValidationError("Fixed discount must be greater than 0")
    if (data.get("valid_days") or 0) <= 0:
        raise ValidationError("valid_days must be greater than 0")


async def create_rule(db: AsyncSession, payload, _user=None) -> AutoCouponRule:
    data = payload.model_dump()
    _validate_rule_fields(data)
    data["code_prefix"] = data["code_prefix"].strip().upper()

    rule = AutoCouponRule(**data, redemption_count=0, created_by=getattr(_user, "id", None))
    db.add(rule)
    try:
        await db.flush()
        await log_user_activity(db, _user, f"Created auto coupon rule '{rule.name}'")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(rule)
    return rule


async def get_rule(db: AsyncSession, rule_id: int) -> AutoCouponRule:
    rule = await db.get(AutoCouponRule, rule_id)
    if not rule:
        raise RuleNotFoundError()
    return rule


async def list_rules(db: AsyncSession, page: int = 1, limit: int = 20, is_active: Optional[bool] = None):
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    query = select(AutoCouponRule)
    count_query = select(func.count(AutoCouponRule.id))
    if is_active is not None:
        query = query.where(AutoCouponRule.is_active == is_active)
        count_query = count_query.where(AutoCouponRule.is_active == is_active)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(
        query.order_by(AutoCouponRule.created_at.desc(), AutoCouponRule.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "rules": result.scalars().all(),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


async def update_rule(db: AsyncSession, rule_id: int, payload, _user=None) -> AutoCouponRule:
    rule = await get_rule(db, rule_id)
    changes = payload.model_dump(exclude_unset=True)

    merged = {column: getattr(rule, column) for column in (
        "trigger_type", "required_order_count", "required_total_spent",
        "discount_type", "discount_value", "valid_days",
    )}
    merged.update(changes)
    _validate_rule_fields(merged)

    if "code_prefix" in changes and changes["code_prefix"]:
        changes["code_prefix"] = changes["code_prefix"].strip().upper()
    for field, value in changes.items():
        setattr(rule, field, value)

    try:
        await log_user_activity(db, _user, f"Updated auto coupon rule '{rule.name}'")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(rule)
    return rule


async def delete_rule(db: AsyncSession, rule_id: int, _user=None) -> AutoCouponRule:
    """Soft delete: the rule stops firing, issued coupons stay valid."""
    rule = await get_rule(db, rule_id)
    rule.is_active = False
    try:
        await log_user_activity(db, _user, f"Deactivated auto coupon rule '{rule.name}'")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(rule)
    return rule
