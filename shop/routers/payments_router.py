# shop/routers/payments_router.py
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from shop.core.config import CLIENT_URL
from shop.core.db import get_db
from shop.core.exceptions import ShopError
from shop.models.order_models import PaymentMethod
from shop.models.payment_models import PaymentRecordStatus
from shop.schemas.payment_schemas import (
    PaymentCreate, PaymentRefund, PaymentOut, PaymentVerifyOut, PaymentListOut,
)
from shop.schemas.response_schemas import ResponseMessage
from shop.services.payment_services.payment_service import (
    create_payment, handle_momo_callback, handle_vnpay_return, handle_vnpay_ipn,
    verify_payment, get_payment_by_order, refund_payment, list_payments,
)
from shop.utils.check_roles import require_role
from shop.utils.get_user import get_current_user

router = APIRouter(prefix="/payments", tags=["Payments"])


def _client_redirect(path: str, request: Request) -> RedirectResponse:
    query = urlencode(list(request.query_params.multi_items()))
    return RedirectResponse(url=f"{CLIENT_URL}{path}?{query}", status_code=302)


# POST /payments
@router.post("", response_model=ResponseMessage[PaymentOut], status_code=201)
async def route_create_payment(
    payload: PaymentCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    payment = await create_payment(
        db, user, payload.order_id,
        method=payload.payment_method,
        return_url=payload.return_url,
        language=payload.language,
        client_ip=request.client.host if request.client else None,
    )
    return {"message": "Payment created successfully", "data": payment}


# ---------------------------------------------------------------
# MoMo
# ---------------------------------------------------------------
# POST /payments/momo/ipn
@router.post("/momo/ipn")
async def route_momo_ipn(payload: dict = Body(...), db: AsyncSession = Depends(get_db)):
    """Server-to-server notification from MoMo."""
    try:
        await handle_momo_callback(db, payload)
    except ShopError as e:
        return JSONResponse(status_code=e.status_code, content={"resultCode": 1, "message": e.message})
    return {"resultCode": 0, "message": "Success"}


# GET /payments/momo/return
@router.get("/momo/return")
async def route_momo_return(request: Request):
    return _client_redirect("/payment/momo-return", request)


# GET /payments/momo/callback
@router.get("/momo/callback", response_model=ResponseMessage[PaymentOut])
async def route_momo_callback(request: Request, db: AsyncSession = Depends(get_db)):
    """The client forwards the query string MoMo appended to its redirect."""
    payment = await handle_momo_callback(db, dict(request.query_params))
    return {"message": "Payment processed", "data": payment}


# ---------------------------------------------------------------
# VNPay
# ---------------------------------------------------------------
# GET /payments/vnpay/return
@router.get("/vnpay/return")
async def route_vnpay_return(request: Request):
    return _client_redirect("/payment/vnpay-return", request)


# GET /payments/vnpay/callback
@router.get("/vnpay/callback", response_model=ResponseMessage[PaymentOut])
async def route_vnpay_callback(request: Request, db: AsyncSession = Depends(get_db)):
    payment = await handle_vnpay_return(db, dict(request.query_params))
    return {"message": "Payment processed", "data": payment}


# GET /payments/vnpay/ipn
@router.get("/vnpay/ipn")
async def route_vnpay_ipn(request: Request, db: AsyncSession = Depends(get_db)):
    return await handle_vnpay_ipn(db, dict(request.query_params))


# ---------------------------------------------------------------
# Reads / admin
# ---------------------------------------------------------------
# GET /payments/{payment_id}/verify
@router.get("/{payment_id}/verify", response_model=ResponseMessage[PaymentVerifyOut])
async def route_verify_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    data = await verify_payment(db, payment_id, user)
    return {"message": "Payment status fetched", "data": data}


# GET /payments/order/{order_id}
@router.get("/order/{order_id}", response_model=ResponseMessage[PaymentOut])
async def route_get_payment_by_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    payment = await get_payment_by_order(db, order_id, user)
    return {"message": "Payment fetched successfully", "data": payment}


# POST /payments/{payment_id}/refund
@router.post("/{payment_id}/refund", response_model=ResponseMessage[PaymentOut])
@require_role(["admin"])
async def route_refund_payment(
    payment_id: int,
    payload: PaymentRefund,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    payment = await refund_payment(db, payment_id, amount=payload.amount, reason=payload.reason, _user=_user)
    return {"message": "Payment refunded successfully", "data": payment}


# GET /payments
@router.get("", response_model=ResponseMessage[PaymentListOut])
@require_role(["admin"])
async def route_list_payments(
    order_id: Optional[int] = Query(None),
    status: Optional[PaymentRecordStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    data = await list_payments(
        db, order_id=order_id, status=status, payment_method=payment_method, page=page, limit=limit,
    )
    return {"message": "Payments fetched successfully", "data": data}
