"""
Checkout: totals, stock, coupon redemption, cart clearing and all-or-nothing failure.
"""
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from shop.core.exceptions import (
    CartEmptyError, CouponNotApplicableError, InsufficientStockError, OrderNotFoundError,
    VariantNotFoundError,
)
from shop.models import Order, OrderStatus, PaymentStatus, PaymentMethod, CartItem, DiscountType
from shop.services.order_services import order_service
from tests.factories import (
    make_user, make_variant, add_to_cart, make_coupon, order_payload, place_order,
    stock_of, usage_count_of, usage_rows_for_order, RecordingNotifier, BrokenNotifier,
)


async def order_count(db) -> int:
    return (await db.execute(select(func.count(Order.id)))).scalar()


async def cart_size(db) -> int:
    return (await db.execute(select(func.count(CartItem.id)))).scalar()


@pytest.mark.asyncio
async def test_create_cod_order(db):
    user = await make_user(db)
    p1, v1 = await make_variant(db, price="120000", stock=5, original_price="150000")
    p2, v2 = await make_variant(db, price="80000", stock=2)
    await add_to_cart(db, user, p1, v1, 3)
    await add_to_cart(db, user, p2, v2, 1)
    notifier = RecordingNotifier()

    result = await order_service.create_order(db, user.id, order_payload("cod"), notifier=notifier)
    order = result["order"]

    assert result["requires_payment"] is False
    assert order.order_code.startswith("ORD") and len(order.order_code) == 15
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.payment_method == PaymentMethod.COD
    assert order.subtotal == Decimal("440000")
    assert order.shipping_fee == Decimal("30000")
    assert order.discount_amount == Decimal("0")
    assert order.total_amount == order.subtotal + order.shipping_fee - order.discount_amount
    assert order.shipping_address["city"] == "Ho Chi Minh City"

    first = order.items[0]
    assert (first.product_name, first.variant_sku, first.quantity) == (p1.name, v1.sku, 3)
    assert first.unit_price == Decimal("120000")
    assert first.original_price == Decimal("150000")
    assert first.subtotal == Decimal("360000")

    assert await stock_of(db, v1.id) == 2
    assert await stock_of(db, v2.id) == 1
    assert await cart_size(db) == 0
    assert notifier.confirmations == [order.order_code]


@pytest.mark.asyncio
async def test_online_order_requires_payment(db):
    user = await make_user(db)
    p, v = await make_variant(db)
    await add_to_cart(db, user, p, v, 1)

    result = await order_service.create_order(db, user.id, order_payload("momo"), notifier=RecordingNotifier())
    assert result["requires_payment"] is True


@pytest.mark.asyncio
async def test_order_with_save10(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "SAVE10")
    p, v = await make_variant(db, price="250000", stock=5)
    await add_to_cart(db, user, p, v, 2)

    result = await order_service.create_order(
        db, user.id, order_payload("cod", coupon_code="save10"), notifier=RecordingNotifier()
    )
    order = result["order"]

    assert order.subtotal == Decimal("500000")
    assert order.discount_amount == Decimal("40000")
    assert order.total_amount == Decimal("490000")
    assert order.coupon_code == "SAVE10"
    assert await usage_count_of(db, coupon.id) == 1
    assert len(await usage_rows_for_order(db, order.id)) == 1


@pytest.mark.asyncio
async def test_fixed_coupon_is_capped_at_subtotal(db):
    user = await make_user(db)
    await make_coupon(
        db, "FREE", discount_type=DiscountType.FIXED_AMOUNT, discount_value=Decimal("1000000"), max_discount_amount=None
    )
    p, v = await make_variant(db, price="90000")
    await add_to_cart(db, user, p, v, 1)

    result = await order_service.create_order(
        db, user.id, order_payload("cod", coupon_code="FREE"), notifier=RecordingNotifier()
    )
    order = result["order"]
    assert order.discount_amount == Decimal("90000")
    assert order.shipping_fee == Decimal("30000")
    assert order.total_amount == Decimal("30000")


@pytest.mark.asyncio
@pytest.mark.parametrize("requested, charged", [
    (None, Decimal("30000")),
    (Decimal("0"), Decimal("30000")),
    (Decimal("15000"), Decimal("15000")),
])
async def test_shipping_fee_defaults(db, requested, charged):
    user = await make_user(db)
    order = await place_order(db, user, price="100000", shipping_fee=requested)
    assert order.shipping_fee == charged
    assert order.total_amount == Decimal("100000") + charged


@pytest.mark.asyncio
async def test_empty_cart(db):
    user = await make_user(db)
    with pytest.raises(CartEmptyError):
        await order_service.create_order(db, user.id, order_payload(), notifier=RecordingNotifier())


@pytest.mark.asyncio
async def test_insufficient_stock_changes_nothing(db):
    user = await make_user(db)
    p1, v1 = await make_variant(db, stock=5)
    p2, v2 = await make_variant(db, stock=1)
    await add_to_cart(db, user, p1, v1, 2)
    await add_to_cart(db, user, p2, v2, 3)
    # the failed checkout rolls back and expires loaded instances
    v1_id, p2_id, v2_id = v1.id, p2.id, v2.id

    with pytest.raises(InsufficientStockError) as exc:
        await order_service.create_order(db, user.id, order_payload(), notifier=RecordingNotifier())

    assert exc.value.details == {"product_id": p2_id, "variant_id": v2_id, "requested": 3, "available": 1}
    assert await stock_of(db, v1_id) == 5
    assert await stock_of(db, v2_id) == 1
    assert await order_count(db) == 0
    assert await cart_size(db) == 2


@pytest.mark.asyncio
async def test_unavailable_variant_counts_as_out_of_stock(db):
    user = await make_user(db)
    p, v = await make_variant(db, stock=10)
    v.is_available = False
    await db.commit()
    await add_to_cart(db, user, p, v, 1)

    with pytest.raises(InsufficientStockError):
        await order_service.create_order(db, user.id, order_payload(), notifier=RecordingNotifier())


@pytest.mark.asyncio
async def test_missing_variant(db):
    user = await make_user(db)
    p, v = await make_variant(db)
    await add_to_cart(db, user, p, v, 1)
    await db.delete(v)
    await db.commit()

    with pytest.raises(VariantNotFoundError):
        await order_service.create_order(db, user.id, order_payload(), notifier=RecordingNotifier())


@pytest.mark.asyncio
async def test_rejected_coupon_aborts_checkout(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "BIGSPENDER", min_order_value=Decimal("1000000"))
    p, v = await make_variant(db, price="100000", stock=4)
    await add_to_cart(db, user, p, v, 2)
    variant_id, coupon_id = v.id, coupon.id

    with pytest.raises(CouponNotApplicableError) as exc:
        await order_service.create_order(
            db, user.id, order_payload(coupon_code="BIGSPENDER"), notifier=RecordingNotifier()
        )

    assert exc.value.reason == "min_order_not_met"
    assert await order_count(db) == 0
    assert await stock_of(db, variant_id) == 4
    assert await usage_count_of(db, coupon_id) == 0
    assert await cart_size(db) == 1


@pytest.mark.asyncio
async def test_snapshot_survives_catalog_edits(db):
    user = await make_user(db)
    p, v = await make_variant(db, price="100000")
    await add_to_cart(db, user, p, v, 1)
    result = await order_service.create_order(db, user.id, order_payload(), notifier=RecordingNotifier())
    order_id = result["order"].id

    v.price = Decimal("999000")
    p.name = "Renamed"
    await db.commit()

    order = await order_service.get_order_by_id(db, order_id)
    assert order.items[0].unit_price == Decimal("100000")
    assert order.items[0].product_name != "Renamed"


@pytest.mark.asyncio
async def test_failing_notifier_does_not_fail_checkout(db):
    user = await make_user(db)
    p, v = await make_variant(db)
    await add_to_cart(db, user, p, v, 1)

    result = await order_service.create_order(db, user.id, order_payload(), notifier=BrokenNotifier())
    assert result["order"].id is not None


@pytest.mark.asyncio
async def test_orders_are_scoped_to_owner(db):
    alice = await make_user(db)
    bob = await make_user(db)
    order = await place_order(db, alice)

    assert (await order_service.get_order_by_id(db, order.id, user_id=alice.id)).id == order.id
    with pytest.raises(OrderNotFoundError):
        await order_service.get_order_by_id(db, order.id, user_id=bob.id)


@pytest.mark.asyncio
async def test_listing_filters_sort_and_pagination(db):
    alice = await make_user(db)
    bob = await make_user(db)
    cheap = await place_order(db, alice, price="50000")
    pricey = await place_order(db, alice, price="500000", payment_method="vnpay")
    middle = await place_order(db, alice, price="150000")
    await place_order(db, bob, price="70000")

    page = await order_service.list_orders_for_user(db, alice.id, sort="-total_amount", page=1, limit=2)
    assert [o.id for o in page["orders"]] == [pricey.id, middle.id]
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}

    ascending = await order_service.list_orders_for_user(db, alice.id, sort="total_amount")
    assert ascending["orders"][0].id == cheap.id

    vnpay = await order_service.list_orders_for_user(db, alice.id, payment_method=PaymentMethod.VNPAY)
    assert [o.id for o in vnpay["orders"]] == [pricey.id]

    everything = await order_service.list_all_orders(db)
    assert everything["pagination"]["total"] == 4


@pytest.mark.asyncio
async def test_preview_coupon_does_not_write(db):
    user = await make_user(db)
    coupon = await make_coupon(db, "SAVE10")
    p, v = await make_variant(db, price="250000", stock=3)
    await add_to_cart(db, user, p, v, 2)

    preview = await order_service.preview_coupon(db, user.id, "SAVE10")

    assert preview["discount_amount"] == Decimal("40000")
    assert preview["total_amount"] == Decimal("490000")
    assert await usage_count_of(db, coupon.id) == 0
    assert await stock_of(db, v.id) == 3
    assert await cart_size(db) == 1
