"""
Coupon ledger: discount pricing, validation reasons, redemption and reversal.
"""
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from hypothesis import given, settings, strategies as st

from shop.core.exceptions import (
    CouponLimitError, CouponNotApplicableError, CouponNotFoundError, ValidationError,
)
from shop.models import DiscountType
from shop.schemas.coupon_schemas import CouponCreate
from shop.services.order_services import coupon_service
from shop.services.order_services.coupon_service import compute_discount
from shop.utils.time_utils import utcnow
from tests.factories import (
    make_user, make_coupon, place_order, usage_count_of, usage_rows_for_order,
)

money = st.decimals(min_value=0, max_value=100_000_000, places=2, allow_nan=False, allow_infinity=False)


def line(product_id=1, category_id=None, brand_id=None):
    return SimpleNamespace(product_id=product_id, category_id=category_id, brand_id=brand_id)


# -----------------------
# compute_discount
# -----------------------
def test_percentage_discount_is_capped():
    discount = compute_discount(DiscountType.PERCENTAGE, Decimal("10"), Decimal("500000"), Decimal("40000"))
    assert discount == Decimal("40000.00")


def test_percentage_discount_below_cap():
    discount = compute_discount(DiscountType.PERCENTAGE, Decimal("10"), Decimal("200000"), Decimal("40000"))
    assert discount == Decimal("20000.00")


def test_fixed_discount_never_exceeds_subtotal():
    assert compute_discount(DiscountType.FIXED_AMOUNT, Decimal("100000"), Decimal("60000")) == Decimal("60000.00")


@given(subtotal=money, rate=st.decimals(min_value=0, max_value=100, places=2), cap=st.one_of(st.none(), money))
@settings(max_examples=200, deadline=None)
def test_percentage_discount_bounds(subtotal, rate, cap):
    discount = compute_discount(DiscountType.PERCENTAGE, rate, subtotal, cap)
    assert Decimal("0") <= discount <= subtotal
    if cap is not None:
        assert discount <= cap


@given(subtotal=money, value=money)
@settings(max_examples=200, deadline=None)
def test_fixed_discount_bounds(subtotal, value):
    discount = compute_discount(DiscountType.FIXED_AMOUNT, value, subtotal)
    assert Decimal("0") <= discount <= subtotal
    assert discount == min(value, subtotal)


# -----------------------
# validate_and_price
# -----------------------
@pytest.mark.asyncio
async def test_save10_scenario(db):
    user = await make_user(db)
    await make_coupon(db, "SAVE10")

    coupon, discount = await coupon_service.validate_and_price(db, "save10", user.id, Decimal("500000"), [line()])

    assert coupon.code == "SAVE10"
    assert discount == Decimal("40000.00")


@pytest.mark.asyncio
async def test_unknown_coupon(db):
    user = await make_user(db)
    with pytest.raises(CouponNotFoundError) as exc:
        await coupon_service.validate_and_price(db, "NOPE", user.id, Decimal("100000"), [line()])
    assert exc.value.reason == "not_found"


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides, reason", [
    ({"is_active": False}, "inactive"),
    ({"start_date": utcnow() + timedelta(days=2)}, "not_started"),
    ({"end_date": utcnow() - timedelta(minutes=1)}, "expired"),
    ({"min_order_value": Decimal("600000")}, "min_order_not_met"),
    ({"applicable_products": [999]}, "not_applicable"),
])
async def test_coupon_rejections(db, overrides, reason):
    user = await make_user(db)
    await make_coupon(db, "CHECKME", **overrides)

    with pytest.raises(CouponNotApplicableError) as exc:
        await coupon_service.validate_and_price(db, "CHECKME", user.id, Decimal("500000"), [line(product_id=1)])
    assert exc.value.reason == reason
    assert exc.value.details["code"] == "CHECKME"


@pytest.mark.asyncio
async def test_allow_list_and_exclusions(db):
    alice = await make_user(db)
    bob = await make_user(db)
    await make_coupon(db, "VIPONLY", applicable_users=[alice.id])
    await make_coupon(db, "NOTBOB", excluded_users=[bob.id])

    await coupon_service.validate_and_price(db, "VIPONLY", alice.id, Decimal("100000"), [line()])
    with pytest.raises(CouponNotApplicableError) as exc:
        await coupon_service.validate_and_price(db, "VIPONLY", bob.id, Decimal("100000"), [line()])
    assert exc.value.reason == "user_not_eligible"

    with pytest.raises(CouponNotApplicableError) as exc:
        await coupon_service.validate_and_price(db, "NOTBOB", bob.id, Decimal("100000"), [line()])
    assert exc.value.reason == "user_excluded"


@pytest.mark.asyncio
async def test_global_usage_limit(db):
    user = await make_user(db)
    await make_coupon(db, "GONE", usage_limit=5, usage_count=5)

    with pytest.raises(CouponLimitError) as exc:
        await coupon_service.validate_and_price(db, "GONE", user.id, Decimal("100000"), [line()])
    assert exc.value.reason == "usage_limit_reached"


@pytest.mark.asyncio
async def test_per_user_limit_counts_previous_redemptions(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "ONCE", usage_limit_per_user=1)
    order = await place_order(db, user, coupon_code="ONCE")
    assert order.coupon_code == "ONCE"

    with pytest.raises(CouponLimitError) as exc:
        await coupon_service.validate_and_price(db, "ONCE", user.id, Decimal("250000"), [line()])
    assert exc.value.reason == "user_limit_reached"
    assert await usage_count_of(db, coupon.id) == 1


@pytest.mark.asyncio
async def test_category_and_brand_restrictions(db):
    user = await make_user(db)
    await make_coupon(db, "SKINCARE", applicable_categories=[7])
    await make_coupon(db, "BRANDX", applicable_brands=[3])

    lines = [line(product_id=1, category_id=2, brand_id=3), line(product_id=2, category_id=7)]
    await coupon_service.validate_and_price(db, "SKINCARE", user.id, Decimal("100000"), lines)
    await coupon_service.validate_and_price(db, "BRANDX", user.id, Decimal("100000"), lines)

    with pytest.raises(CouponNotApplicableError):
        await coupon_service.validate_and_price(db, "SKINCARE", user.id, Decimal("100000"), [line(category_id=1)])


# -----------------------
# redeem / reverse
# -----------------------
@pytest.mark.asyncio
async def test_reverse_removes_usage_once(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "SAVE10")
    order = await place_order(db, user, coupon_code="SAVE10")
    assert await usage_count_of(db, coupon.id) == 1

    assert await coupon_service.reverse(db, order.id) is True
    await db.commit()
    assert await usage_count_of(db, coupon.id) == 0
    assert await usage_rows_for_order(db, order.id) == []

    # nothing left to reverse
    assert await coupon_service.reverse(db, order.id) is False
    assert await usage_count_of(db, coupon.id) == 0


@pytest.mark.asyncio
async def test_redeem_respects_limit_at_write_time(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "LAST", usage_limit=1)
    order = await place_order(db, user)
    order_id = order.id

    # validation passed earlier, but another checkout used the last slot
    coupon.usage_count = 1
    await db.commit()

    with pytest.raises(CouponLimitError):
        await coupon_service.redeem(db, coupon, user.id, order_id, Decimal("1000"))
    await db.rollback()
    assert await usage_rows_for_order(db, order_id) == []


@pytest.mark.asyncio
async def test_redeem_respects_per_user_limit_at_write_time(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "ONCE", usage_limit_per_user=1)
    first = await place_order(db, user)
    second = await place_order(db, user)
    coupon_id, first_id, second_id = coupon.id, first.id, second.id

    # both checkouts validated before either one wrote its redemption
    for _ in range(2):
        await coupon_service.validate_and_price(db, "ONCE", user.id, Decimal("250000"), [line()])

    await coupon_service.redeem(db, coupon, user.id, first_id, Decimal("25000"))
    await db.commit()

    with pytest.raises(CouponLimitError) as exc:
        await coupon_service.redeem(db, coupon, user.id, second_id, Decimal("25000"))
    assert exc.value.reason == "user_limit_reached"
    await db.rollback()

    assert await usage_count_of(db, coupon_id) == 1
    assert len(await usage_rows_for_order(db, first_id)) == 1
    assert await usage_rows_for_order(db, second_id) == []


# -----------------------
# create_coupon
# -----------------------
def coupon_payload(**overrides):
    now = utcnow()
    data = {
        "code": "summer25",
        "discount_type": "percentage",
        "discount_value": Decimal("25"),
        "start_date": now,
        "end_date": now + timedelta(days=10),
    }
    data.update(overrides)
    return CouponCreate(**data)


@pytest.mark.asyncio
async def test_create_coupon_normalizes_code(db):
    admin = await make_user(db, role="admin")
    coupon = await coupon_service.create_coupon(db, coupon_payload(), admin)
    assert coupon.code == "SUMMER25"
    assert coupon.usage_count == 0
    assert coupon.created_by == admin.id


@pytest.mark.asyncio
async def test_create_coupon_validation(db):
    admin = await make_user(db, role="admin")
    await coupon_service.create_coupon(db, coupon_payload(), admin)

    with pytest.raises(ValidationError, match="already exists"):
        await coupon_service.create_coupon(db, coupon_payload(code="SUMMER25"), admin)
    with pytest.raises(ValidationError, match="between 0 and 100"):
        await coupon_service.create_coupon(db, coupon_payload(code="BIG", discount_value=Decimal("150")), admin)
    with pytest.raises(ValidationError, match="before end date"):
        now = utcnow()
        await coupon_service.create_coupon(db, coupon_payload(code="BACKWARDS", start_date=now, end_date=now), admin)
