# shop/routers/coupons_router.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shop.core.db import get_db
from shop.schemas.coupon_schemas import CouponCreate, CouponPreview, CouponOut, CouponPreviewOut
from shop.schemas.response_schemas import ResponseMessage
from shop.services.order_services.coupon_service import create_coupon
from shop.services.order_services.order_service import preview_coupon
from shop.utils.check_roles import require_role
from shop.utils.get_user import get_current_user

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("", response_model=ResponseMessage[CouponOut], status_code=201)
@require_role(["admin"])
async def route_create_coupon(
    payload: CouponCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    coupon = await create_coupon(db, payload, _user)
    return {"message": "Coupon created successfully", "data": coupon}


@router.post("/preview", response_model=ResponseMessage[CouponPreviewOut])
async def route_preview_coupon(
    payload: CouponPreview,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    """Price the current cart with a coupon; nothing is reserved."""
    data = await preview_coupon(db, user.id, payload.code, shipping_fee=payload.shipping_fee)
    return {"message": "Coupon is applicable", "data": data}
