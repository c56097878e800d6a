# shop/services/order_services/order_service.py
"""
Order lifecycle: checkout from the cart, status transitions and payment status.

Checkout and cancellation each run in a single transaction. Stock, coupon usage
and status changes are conditional UPDATEs, so a concurrent request that got
there first makes the later one fail instead of overwriting it.
"""
import logging
import random
import string
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.config import DEFAULT_SHIPPING_FEE
from shop.core.exceptions import (
    CartEmptyError, InsufficientStockError, InvalidTransitionError, OrderNotFoundError,
)
from shop.models.order_models import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from shop.models.catalog_models import ProductVariant
from shop.services import cart_service, catalog_service
from shop.services.notification_service import get_notifier, notify_quietly
from shop.services.order_services import coupon_service, auto_coupon_service
from shop.utils.activity_helpers import log_user_activity
from shop.utils.decimal_utils import to_decimal
from shop.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
ORDER_TRANSITIONS = {
    OrderStatus.CONFIRMED: (OrderStatus.PENDING,),
    OrderStatus.PROCESSING: (OrderStatus.CONFIRMED,),
    OrderStatus.SHIPPING: (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
    OrderStatus.DELIVERED: (OrderStatus.SHIPPING,),
    OrderStatus.CANCELLED: (
        OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPING,
    ),
    OrderStatus.REFUNDED: (OrderStatus.CANCELLED, OrderStatus.DELIVERED),
}

USER_CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)

SORTABLE_FIELDS = {
    "created_at": Order.created_at,
    "total_amount": Order.total_amount,
}


def _generate_order_code() -> str:
    stamp = str(int(time.time() * 1000))[-8:]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"ORD{stamp}{suffix}"


def _shipping_fee(requested) -> Decimal:
    # a missing or zero fee falls back to the flat default
    return to_decimal(requested or DEFAULT_SHIPPING_FEE)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return current in ORDER_TRANSITIONS.get(target, ())


# -----------------------
# CHECKOUT
# -----------------------
async def _snapshot_cart(db: AsyncSession, user_id: int) -> tuple[list[dict], Decimal]:
    cart_items = await cart_service.get_cart(db, user_id)
    if not cart_items:
        raise CartEmptyError()

    snapshots = []
    subtotal = Decimal("0.00")
    for item in cart_items:
        product, variant = await catalog_service.get_product_variant(db, item.product_id, item.variant_id)
        available = variant.stock_quantity if variant.is_available else 0
        if item.quantity > available:
            raise InsufficientStockError(product.name, product.id, variant.id, item.quantity, available)

        unit_price = to_decimal(variant.price)
        line_total = to_decimal(unit_price * item.quantity)
        snapshots.append({
            "product_id": product.id,
            "product_name": product.name,
            "product_slug": product.slug,
            "product_image": product.image_url,
            "category_id": product.category_id,
            "brand_id": product.brand_id,
            "variant_id": variant.id,
            "variant_sku": variant.sku,
            "variant_label": variant.label,
            "variant_image": variant.image_url or product.image_url,
            "quantity": item.quantity,
            "unit_price": unit_price,
            "original_price": to_decimal(variant.original_price) if variant.original_price is not None else None,
            "subtotal": line_total,
        })
        subtotal += line_total
    return snapshots, to_decimal(subtotal)


async def _insert_order(db: AsyncSession, snapshots: list[dict], **fields) -> Order:
    # order codes are random; retry the insert on a unique-key collision
    for _ in range(5):
        order = Order(
            order_code=_generate_order_code(),
            items=[OrderItem(**snap) for snap in snapshots],
            **fields,
        )
        try:
            async with db.begin_nested():
                db.add(order)
                await db.flush()
            return order
        except IntegrityError:
            logger.warning("Order code collision on %s, retrying", order.order_code)
            continue
    raise RuntimeError("Could not generate unique order code after retries")


async def _current_stock(db: AsyncSession, variant_id: int) -> int:
    result = await db.execute(select(ProductVariant.stock_quantity).where(ProductVariant.id == variant_id))
    return result.scalar() or 0


async def create_order(db: AsyncSession, user_id: int, payload, notifier=None) -> dict:
    """
    Turn the user's cart into a pending order.

    Every line is validated and priced before anything is written. The order
    insert, stock decrements, coupon redemption and cart clear then commit
    together, or not at all.
    """
    notifier = notifier or get_notifier()
    try:
        snapshots, subtotal = await _snapshot_cart(db, user_id)

        shipping_fee = _shipping_fee(payload.shipping_fee)
        coupon = None
        discount = Decimal("0.00")
        if payload.coupon_code:
            lines = [OrderItem(**snap) for snap in snapshots]
            coupon, discount = await coupon_service.validate_and_price(
                db, payload.coupon_code, user_id, subtotal, lines
            )

        total = max(subtotal + shipping_fee - discount, Decimal("0.00"))
        order = await _insert_order(
            db,
            snapshots,
            user_id=user_id,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            discount_amount=discount,
            total_amount=to_decimal(total),
            shipping_address=payload.shipping_address.model_dump(),
            note=payload.note,
            status=OrderStatus.PENDING,
            payment_method=PaymentMethod(payload.payment_method),
            payment_status=PaymentStatus.PENDING,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
        )

        for snap in snapshots:
            ok = await catalog_service.adjust_stock(db, snap["product_id"], snap["variant_id"], -snap["quantity"])
            if not ok:
                available = await _current_stock(db, snap["variant_id"])
                raise InsufficientStockError(
                    snap["product_name"], snap["product_id"], snap["variant_id"], snap["quantity"], available
                )

        if coupon:
            await coupon_service.redeem(db, coupon, user_id, order.id, discount)

        await cart_service.clear_cart(db, user_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(order)
    logger.info(
        "Order %s created for user %s: total=%s method=%s",
        order.order_code, user_id, order.total_amount, order.payment_method.value,
    )
    await notify_quietly(notifier.send_order_confirmation, order)
    return {
        "order": order,
        "requires_payment": order.payment_method != PaymentMethod.COD,
    }


async def preview_coupon(db: AsyncSession, user_id: int, code: str, shipping_fee=None) -> dict:
    """Price the caller's current cart with a coupon without writing anything."""
    snapshots, subtotal = await _snapshot_cart(db, user_id)
    lines = [OrderItem(**snap) for snap in snapshots]
    coupon, discount = await coupon_service.validate_and_price(db, code, user_id, subtotal, lines)
    shipping_fee = _shipping_fee(shipping_fee)
    return {
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": to_decimal(coupon.discount_value),
        "subtotal": subtotal,
        "shipping_fee": shipping_fee,
        "discount_amount": discount,
        "total_amount": to_decimal(max(subtotal + shipping_fee - discount, Decimal("0.00"))),
    }


# -----------------------
# READS
# -----------------------
async def get_order_by_id(db: AsyncSession, order_id: int, user_id: Optional[int] = None) -> Order:
    """Load an order; when `user_id` is given, orders of other users are reported as missing."""
    query = select(Order).where(Order.id == order_id)
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    result = await db.execute(query)
    order = result.scalars().first()
    if not order:
        raise OrderNotFoundError()
    return order


async def _list_orders(
    db: AsyncSession,
    user_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    payment_method: Optional[PaymentMethod] = None,
    sort: str = "-created_at",
    page: int = 1,
    limit: int = 10,
):
    page = max(page, 1)
    limit = max(min(limit, 100), 1)

    conditions = []
    if user_id is not None:
        conditions.append(Order.user_id == user_id)
    if status is not None:
        conditions.append(Order.status == status)
    if payment_status is not None:
        conditions.append(Order.payment_status == payment_status)
    if payment_method is not None:
        conditions.append(Order.payment_method == payment_method)

    descending = sort.startswith("-")
    column = SORTABLE_FIELDS.get(sort.lstrip("-"), Order.created_at)
    ordering = column.desc() if descending else column.asc()

    total = (await db.execute(select(func.count(Order.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Order).where(*conditions)
        .order_by(ordering, Order.id.desc() if descending else Order.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "orders": result.scalars().all(),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


async def list_orders_for_user(db: AsyncSession, user_id: int, **filters):
    return await _list_orders(db, user_id=user_id, **filters)


async def list_all_orders(db: AsyncSession, **filters):
    return await _list_orders(db, **filters)


async def get_order_statistics(db: AsyncSession, user_id: Optional[int] = None) -> dict:
    scope = [Order.user_id == user_id] if user_id is not None else []

    result = await db.execute(
        select(Order.status, func.count(Order.id)).where(*scope).group_by(Order.status)
    )
    per_status = {status.value: 0 for status in OrderStatus}
    for status, count in result.all():
        per_status[OrderStatus(status).value] = count

    revenue = await db.execute(
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.payment_status == PaymentStatus.PAID, *scope
        )
    )
    return {
        "total_orders": sum(per_status.values()),
        "total_revenue": to_decimal(revenue.scalar()),
        **per_status,
    }


# -----------------------
# TRANSITIONS
# -----------------------
async def _release_order(db: AsyncSession, order: Order):
    """Put stock back for every line and undo the coupon redemption."""
    for item in order.items:
        restocked = await catalog_service.adjust_stock(db, item.product_id, item.variant_id, item.quantity)
        if not restocked:
            logger.warning(
                "Order %s: variant %s of product %s no longer exists, %d units not restocked",
                order.order_code, item.variant_id, item.product_id, item.quantity,
            )
    reversed_coupon = await coupon_service.reverse(db, order.id)
    logger.info(
        "Order %s released: %d lines restocked, coupon reversed=%s",
        order.order_code, len(order.items), reversed_coupon,
    )


async def _transition(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    *,
    tracking_number: Optional[str] = None,
    reason: Optional[str] = None,
    actor=None,
    notifier=None,
) -> Order:
    current = order.status
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)

    now = utcnow()
    values = {"status": target, "updated_at": now}
    marks_cod_paid = False
    if target == OrderStatus.CONFIRMED:
        values["confirmed_at"] = now
    elif target == OrderStatus.SHIPPING:
        values["shipping_at"] = now
        if tracking_number:
            values["tracking_number"] = tracking_number
    elif target == OrderStatus.DELIVERED:
        values["delivered_at"] = now
        if order.payment_method == PaymentMethod.COD:
            values["payment_status"] = PaymentStatus.PAID
            values["paid_at"] = now
            marks_cod_paid = True
    elif target == OrderStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancellation_reason"] = reason
    elif target == OrderStatus.REFUNDED:
        values["payment_status"] = PaymentStatus.REFUNDED

    try:
        result = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(current.value, target.value, "Order was modified concurrently")

        if target == OrderStatus.CANCELLED:
            await _release_order(db, order)

        if actor is not None:
            await log_user_activity(db, actor, f"Order {order.order_code}: {current.value} -> {target.value}")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(order)
    logger.info("Order %s moved %s -> %s", order.order_code, current.value, target.value)

    if marks_cod_paid:
        await trigger_auto_coupons(db, order.user_id, order)

    notifier = notifier or get_notifier()
    await notify_quietly(notifier.send_order_status_update, order)
    return order


async def update_order_status(
    db: AsyncSession,
    order_id: int,
    target,
    tracking_number: Optional[str] = None,
    reason: Optional[str] = None,
    _user=None,
    notifier=None,
) -> Order:
    order = await get_order_by_id(db, order_id)
    return await _transition(
        db,
        order,
        OrderStatus(target),
        tracking_number=tracking_number,
        reason=reason,
        actor=_user,
        notifier=notifier,
    )


async def cancel_order(db: AsyncSession, order_id: int, user_id: int, reason: Optional[str] = None, notifier=None) -> Order:
    order = await get_order_by_id(db, order_id, user_id=user_id)
    if order.status not in USER_CANCELLABLE_STATUSES:
        raise InvalidTransitionError(
            order.status.value,
            OrderStatus.CANCELLED.value,
            "Order can only be cancelled while pending or confirmed",
        )
    return await _transition(db, order, OrderStatus.CANCELLED, reason=reason, notifier=notifier)


# -----------------------
# PAYMENT STATUS
# -----------------------
async def set_payment_status(db: AsyncSession, order_id: int, status: PaymentStatus) -> bool:
    """Stage an order payment_status change without committing. Returns False when nothing changed."""
    values = {"payment_status": status, "updated_at": utcnow()}
    if status == PaymentStatus.PAID:
        values["paid_at"] = utcnow()
    stmt = update(Order).where(Order.id == order_id, Order.payment_status != status)
    if status == PaymentStatus.FAILED:
        # a failed retry never overrides a settled order
        stmt = stmt.where(Order.payment_status == PaymentStatus.PENDING)
    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    return result.rowcount == 1


async def trigger_auto_coupons(db: AsyncSession, user_id: int, *reload) -> list:
    """
    Best-effort rule evaluation after a payment lands; never fails the caller.

    A failed evaluation rolls the session back, which expires loaded instances;
    the ones passed in `reload` are refreshed so the caller can keep using them.
    """
    try:
        return await auto_coupon_service.evaluate(db, user_id)
    except Exception:
        logger.exception("Auto coupon evaluation failed for user %s", user_id)
        for instance in reload:
            await db.refresh(instance)
        return []


async def update_payment_status(db: AsyncSession, order_id: int, status) -> Order:
    status = PaymentStatus(status)
    order = await get_order_by_id(db, order_id)
    try:
        changed = await set_payment_status(db, order_id, status)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(order)

    if changed and status == PaymentStatus.PAID:
        await trigger_auto_coupons(db, order.user_id, order)
    return order
