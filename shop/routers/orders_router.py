# shop/routers/orders_router.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Literal, Optional

from shop.core.db import get_db
from shop.models.order_models import OrderStatus, PaymentStatus, PaymentMethod
from shop.schemas.order_schemas import (
    OrderCreate, OrderStatusUpdate, OrderCancel, OrderOut, OrderCreatedOut, OrderListOut,
    OrderStatisticsOut,
)
from shop.schemas.response_schemas import ResponseMessage
from shop.services.order_services.order_service import (
    create_order, get_order_by_id, list_orders_for_user, list_all_orders, get_order_statistics,
    update_order_status, cancel_order,
)
from shop.utils.check_roles import require_role, owner_scope
from shop.utils.get_user import get_current_user

router = APIRouter(prefix="/orders", tags=["Orders"])

SortOption = Literal["created_at", "-created_at", "total_amount", "-total_amount"]


# POST /orders
@router.post("", response_model=ResponseMessage[OrderCreatedOut], status_code=201)
async def route_create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    """
    Checkout the caller's cart.
    `requires_payment` tells the client to follow up with POST /payments.
    """
    result = await create_order(db, user.id, payload)
    return {"message": "Order created successfully", "data": result}


# GET /orders/me
@router.get("/me", response_model=ResponseMessage[OrderListOut])
async def route_list_my_orders(
    status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    sort: SortOption = Query("-created_at"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    data = await list_orders_for_user(
        db, user.id,
        status=status, payment_status=payment_status, payment_method=payment_method,
        sort=sort, page=page, limit=limit,
    )
    return {"message": "Orders fetched successfully", "data": data}


# GET /orders/admin
@router.get("/admin", response_model=ResponseMessage[OrderListOut])
@require_role(["admin"])
async def route_list_all_orders(
    status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    sort: SortOption = Query("-created_at"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    data = await list_all_orders(
        db,
        status=status, payment_status=payment_status, payment_method=payment_method,
        sort=sort, page=page, limit=limit,
    )
    return {"message": "Orders fetched successfully", "data": data}


# GET /orders/statistics
@router.get("/statistics", response_model=ResponseMessage[OrderStatisticsOut])
async def route_order_statistics(
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    # admins see every order, users only their own
    data = await get_order_statistics(db, user_id=owner_scope(user))
    return {"message": "Order statistics fetched successfully", "data": data}


# GET /orders/{order_id}
@router.get("/{order_id}", response_model=ResponseMessage[OrderOut])
async def route_get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    order = await get_order_by_id(db, order_id, user_id=owner_scope(user))
    return {"message": "Order fetched successfully", "data": order}


# PATCH /orders/{order_id}/status
@router.patch("/{order_id}/status", response_model=ResponseMessage[OrderOut])
@require_role(["admin"])
async def route_update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    order = await update_order_status(
        db, order_id, payload.status,
        tracking_number=payload.tracking_number,
        reason=payload.reason,
        _user=_user,
    )
    return {"message": f"Order moved to {order.status.value}", "data": order}


# POST /orders/{order_id}/cancel
@router.post("/{order_id}/cancel", response_model=ResponseMessage[OrderOut])
async def route_cancel_order(
    order_id: int,
    payload: OrderCancel,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    order = await cancel_order(db, order_id, user.id, reason=payload.reason)
    return {"message": "Order cancelled successfully", "data": order}
