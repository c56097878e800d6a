# shop/services/payment_services/payment_service.py
"""
Payment attempts for orders and reconciliation of gateway results.

A payment is settled exactly once: the pending -> completed/failed move is a
conditional UPDATE, so replayed or concurrent callbacks find nothing to change
and return the payment as it already is.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core import config
from shop.core.exceptions import (
    GatewayError, InvalidSignatureError, InvalidStateError, PaymentAlreadyCompletedError,
    PaymentAmountMismatchError, PaymentNotFoundError, ValidationError,
)
from shop.models.order_models import OrderStatus, PaymentMethod, PaymentStatus
from shop.models.payment_models import (
    Payment, PaymentRecordStatus, OPEN_PAYMENT_STATUSES, AWAITING_RESULT_STATUSES,
)
from shop.services.order_services import order_service
from shop.services.payment_services.momo_gateway import get_momo_gateway
from shop.services.payment_services.vnpay_gateway import get_vnpay_gateway, SUCCESS_CODE as VNPAY_SUCCESS
from shop.utils.activity_helpers import log_user_activity
from shop.utils.check_roles import is_admin, owner_scope
from shop.utils.decimal_utils import to_decimal, to_minor_units
from shop.utils.time_utils import utcnow, ensure_aware

logger = logging.getLogger(__name__)

EXPIRED_ERROR_CODE = "EXPIRED"
REPLACED_ERROR_CODE = "REPLACED"


def is_expired(payment: Payment, now=None) -> bool:
    expires_at = ensure_aware(payment.expires_at)
    return expires_at is not None and expires_at <= (now or utcnow())


def _is_reusable(payment: Payment, method: PaymentMethod, now) -> bool:
    if payment.payment_method != method or is_expired(payment, now):
        return False
    if method == PaymentMethod.BANK_TRANSFER:
        return True
    return bool((payment.payment_metadata or {}).get("pay_url"))


def _bank_transfer_instructions(order_code: str, amount) -> dict:
    return {
        "bank_name": config.BANK_NAME,
        "account_number": config.BANK_ACCOUNT_NUMBER,
        "account_name": config.BANK_ACCOUNT_NAME,
        "amount": to_minor_units(amount),
        "transfer_content": order_code,
    }


async def _mark_failed(db: AsyncSession, payment: Payment, error_code: str, error_message: str):
    """Close an attempt that is still awaiting a result and reload it from the row."""
    now = utcnow()
    await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status.in_(AWAITING_RESULT_STATUSES))
        .values(
            status=PaymentRecordStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            failed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(payment)


# -----------------------
# CREATE
# -----------------------
async def create_payment(
    db: AsyncSession,
    user,
    order_id: int,
    method=None,
    return_url: Optional[str] = None,
    language: str = "vi",
    client_ip: Optional[str] = None,
    momo=None,
    vnpay=None,
) -> Payment:
    """
    Start (or resume) an online payment for an order.

    A pending, unexpired attempt with the same method is returned as is, so a
    client retry does not open a second gateway session.
    """
    owner_id = owner_scope(user)
    order = await order_service.get_order_by_id(db, order_id, user_id=owner_id)
    method = PaymentMethod(method or order.payment_method)

    if method == PaymentMethod.COD:
        raise ValidationError("Cash on delivery orders are paid on delivery")
    if order.payment_status == PaymentStatus.PAID:
        raise PaymentAlreadyCompletedError()
    if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        raise InvalidStateError(f"Cannot pay for a {order.status.value} order")

    now = utcnow()
    result = await db.execute(
        select(Payment)
        .where(Payment.order_id == order.id, Payment.status.in_(OPEN_PAYMENT_STATUSES))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    payment = None
    try:
        for existing in result.scalars().all():
            if existing.status == PaymentRecordStatus.COMPLETED:
                raise PaymentAlreadyCompletedError()
            if payment is None and _is_reusable(existing, method, now):
                payment = existing
                continue
            code = EXPIRED_ERROR_CODE if is_expired(existing, now) else REPLACED_ERROR_CODE
            await _mark_failed(db, existing, code, "Payment session closed")
            logger.info("Payment %s for %s closed: %s", existing.id, order.order_code, code)
        if payment is not None:
            await db.commit()
            logger.info("Reusing pending payment %s for order %s", payment.id, order.order_code)
            return payment

        payment = Payment(
            order_id=order.id,
            order_code=order.order_code,
            user_id=order.user_id,
            payment_method=method,
            amount=to_decimal(order.total_amount),
            currency=config.DEFAULT_CURRENCY,
            status=PaymentRecordStatus.PENDING,
            initiated_at=now,
            expires_at=now + timedelta(minutes=config.PAYMENT_EXPIRE_MINUTES),
        )
        db.add(payment)
        await db.flush()
        # the pending attempt is committed before any outbound call
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    payment_id, order_code = payment.id, order.order_code
    try:
        if method == PaymentMethod.MOMO:
            gateway = momo or get_momo_gateway()
            created = await gateway.create_payment(
                order.order_code,
                to_minor_units(payment.amount),
                extra_data=str(payment.id),
                redirect_url=return_url,
                lang=language,
            )
            payment.gateway_request_id = created["request_id"]
            payment.gateway_response = created["raw"]
            payment.payment_metadata = {
                "pay_url": created["pay_url"],
                "qr_code_url": created["qr_code_url"],
                "deeplink": created["deeplink"],
            }
        elif method == PaymentMethod.VNPAY:
            gateway = vnpay or get_vnpay_gateway()
            pay_url = gateway.build_payment_url(
                order.order_code,
                payment.amount,
                return_url=return_url,
                language=language,
                client_ip=client_ip or "127.0.0.1",
            )
            payment.payment_metadata = {"pay_url": pay_url, "vnp_TxnRef": order.order_code}
        else:
            payment.payment_metadata = _bank_transfer_instructions(order.order_code, payment.amount)
        await db.commit()
    except GatewayError as e:
        # raised before any field was staged; the order stays payment_status=pending so the client can retry
        await _mark_failed(db, payment, str(e.code if e.code is not None else "GATEWAY_ERROR"), e.provider_message or e.message)
        await db.commit()
        logger.error("Payment %s for order %s failed at %s: %s", payment_id, order_code, e.provider, e.message)
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(payment)
    logger.info("Payment %s created for order %s via %s", payment.id, order.order_code, method.value)
    return payment


# -----------------------
# SETTLEMENT
# -----------------------
async def _settle(
    db: AsyncSession,
    payment: Payment,
    success: bool,
    transaction_id: Optional[str] = None,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    raw: Optional[dict] = None,
) -> Payment:
    if payment.status not in AWAITING_RESULT_STATUSES:
        logger.info("Callback replay for payment %s ignored, already %s", payment.id, payment.status.value)
        return payment

    now = utcnow()
    if success:
        values = {
            "status": PaymentRecordStatus.COMPLETED,
            "transaction_id": transaction_id,
            "completed_at": now,
        }
    else:
        values = {
            "status": PaymentRecordStatus.FAILED,
            "error_code": error_code,
            "error_message": error_message,
            "failed_at": now,
        }
    values.update(gateway_response=raw, updated_at=now)

    try:
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.in_(AWAITING_RESULT_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            await db.refresh(payment)
            logger.info("Payment %s was settled concurrently", payment.id)
            return payment

        await order_service.set_payment_status(
            db, payment.order_id, PaymentStatus.PAID if success else PaymentStatus.FAILED
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(payment)
    logger.info("Payment %s for order %s settled as %s", payment.id, payment.order_code, payment.status.value)

    if success:
        await order_service.trigger_auto_coupons(db, payment.user_id, payment)
    return payment


async def handle_momo_callback(db: AsyncSession, payload: dict, momo=None) -> Payment:
    gateway = momo or get_momo_gateway()
    gateway.verify_ipn(payload)

    result = await db.execute(
        select(Payment).where(
            Payment.order_code == str(payload.get("orderId")),
            Payment.gateway_request_id == str(payload.get("requestId")),
            Payment.payment_method == PaymentMethod.MOMO,
        )
    )
    payment = result.scalars().first()
    if not payment:
        raise PaymentNotFoundError()

    if str(payload.get("amount")) != str(to_minor_units(payment.amount)):
        raise PaymentAmountMismatchError(
            "Callback amount does not match the payment",
            expected=to_minor_units(payment.amount),
            received=payload.get("amount"),
        )

    result_code = str(payload.get("resultCode"))
    return await _settle(
        db,
        payment,
        success=result_code == "0",
        transaction_id=str(payload.get("transId") or ""),
        error_code=result_code,
        error_message=payload.get("message"),
        raw=dict(payload),
    )


async def _find_vnpay_payment(db: AsyncSession, params: dict) -> Payment:
    result = await db.execute(
        select(Payment)
        .where(
            Payment.order_code == str(params.get("vnp_TxnRef")),
            Payment.payment_method == PaymentMethod.VNPAY,
        )
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    payment = result.scalars().first()
    if not payment:
        raise PaymentNotFoundError()
    return payment


def _check_vnpay_amount(payment: Payment, params: dict):
    expected = to_minor_units(payment.amount) * 100
    if str(params.get("vnp_Amount")) != str(expected):
        raise PaymentAmountMismatchError(
            "Callback amount does not match the payment",
            expected=expected,
            received=params.get("vnp_Amount"),
        )


async def _settle_vnpay(db: AsyncSession, payment: Payment, params: dict) -> Payment:
    response_code = str(params.get("vnp_ResponseCode"))
    return await _settle(
        db,
        payment,
        success=response_code == VNPAY_SUCCESS,
        transaction_id=params.get("vnp_TransactionNo"),
        error_code=response_code,
        error_message=None if response_code == VNPAY_SUCCESS else "Payment failed",
        raw=dict(params),
    )


async def handle_vnpay_return(db: AsyncSession, params: dict, vnpay=None) -> Payment:
    gateway = vnpay or get_vnpay_gateway()
    gateway.verify_return(params)
    payment = await _find_vnpay_payment(db, params)
    _check_vnpay_amount(payment, params)
    return await _settle_vnpay(db, payment, params)


async def handle_vnpay_ipn(db: AsyncSession, params: dict, vnpay=None) -> dict:
    """Same as handle_vnpay_return but answered in VNPay's {RspCode, Message} format."""
    gateway = vnpay or get_vnpay_gateway()
    try:
        gateway.verify_return(params)
    except InvalidSignatureError:
        return {"RspCode": "97", "Message": "Invalid signature"}

    try:
        payment = await _find_vnpay_payment(db, params)
    except PaymentNotFoundError:
        return {"RspCode": "01", "Message": "Order not found"}

    try:
        _check_vnpay_amount(payment, params)
    except PaymentAmountMismatchError:
        return {"RspCode": "04", "Message": "Invalid amount"}

    if payment.status not in AWAITING_RESULT_STATUSES:
        return {"RspCode": "02", "Message": "Order already confirmed"}

    try:
        await _settle_vnpay(db, payment, params)
    except Exception:
        logger.exception("VNPay IPN for %s failed", params.get("vnp_TxnRef"))
        return {"RspCode": "99", "Message": "Unknown error"}
    return {"RspCode": "00", "Message": "Confirm Success"}


# -----------------------
# READS
# -----------------------
async def get_payment(db: AsyncSession, payment_id: int, user=None) -> Payment:
    query = select(Payment).where(Payment.id == payment_id)
    if user is not None and not is_admin(user):
        query = query.where(Payment.user_id == user.id)
    result = await db.execute(query)
    payment = result.scalars().first()
    if not payment:
        raise PaymentNotFoundError()
    return payment


async def verify_payment(db: AsyncSession, payment_id: int, user=None) -> dict:
    payment = await get_payment(db, payment_id, user)
    return {
        "payment_id": payment.id,
        "order_id": payment.order_id,
        "order_code": payment.order_code,
        "payment_method": payment.payment_method,
        "amount": to_decimal(payment.amount),
        "status": payment.status,
        "transaction_id": payment.transaction_id,
        "error_code": payment.error_code,
        "error_message": payment.error_message,
        "completed_at": payment.completed_at,
        "failed_at": payment.failed_at,
        "expires_at": payment.expires_at,
        "is_expired": payment.status in AWAITING_RESULT_STATUSES and is_expired(payment),
    }


async def get_payment_by_order(db: AsyncSession, order_id: int, user=None) -> Payment:
    """Latest payment attempt for an order."""
    query = select(Payment).where(Payment.order_id == order_id)
    if user is not None and not is_admin(user):
        query = query.where(Payment.user_id == user.id)
    result = await db.execute(query.order_by(Payment.created_at.desc(), Payment.id.desc()))
    payment = result.scalars().first()
    if not payment:
        raise PaymentNotFoundError()
    return payment


async def list_payments(
    db: AsyncSession,
    order_id: Optional[int] = None,
    status: Optional[PaymentRecordStatus] = None,
    payment_method: Optional[PaymentMethod] = None,
    page: int = 1,
    limit: int = 20,
):
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    conditions = []
    if order_id is not None:
        conditions.append(Payment.order_id == order_id)
    if status is not None:
        conditions.append(Payment.status == status)
    if payment_method is not None:
        conditions.append(Payment.payment_method == payment_method)

    total = (await db.execute(select(func.count(Payment.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Payment).where(*conditions)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "payments": result.scalars().all(),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


# -----------------------
# REFUND
# -----------------------
async def refund_payment(db: AsyncSession, payment_id: int, amount=None, reason: Optional[str] = None, _user=None) -> Payment:
    payment = await get_payment(db, payment_id)
    if payment.status != PaymentRecordStatus.COMPLETED:
        raise InvalidStateError("Only completed payments can be refunded", status=payment.status.value)

    paid = to_decimal(payment.amount)
    refund_amount = to_decimal(amount) if amount is not None else paid
    if refund_amount <= 0 or refund_amount > paid:
        raise ValidationError("Refund amount must be greater than 0 and at most the paid amount")

    now = utcnow()
    try:
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentRecordStatus.COMPLETED)
            .values(
                status=PaymentRecordStatus.REFUNDED,
                refund_amount=refund_amount,
                refund_reason=reason,
                refunded_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("Payment was modified concurrently")

        await order_service.set_payment_status(db, payment.order_id, PaymentStatus.REFUNDED)
        if _user is not None:
            await log_user_activity(db, _user, f"Refunded {refund_amount} on payment {payment.id} ({payment.order_code})")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(payment)
    logger.info("Payment %s refunded: %s", payment.id, refund_amount)
    return payment
