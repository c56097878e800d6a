# shop/routers/auto_coupons_router.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from shop.core.db import get_db
from shop.schemas.auto_coupon_schemas import (
    AutoCouponRuleCreate, AutoCouponRuleUpdate, AutoCouponRuleOut, AutoCouponRuleListOut,
    UserAutoCouponOut,
)
from shop.schemas.response_schemas import ResponseMessage
from shop.services.order_services.auto_coupon_service import (
    get_user_auto_coupons, create_rule, list_rules, get_rule, update_rule, delete_rule,
)
from shop.utils.check_roles import require_role
from shop.utils.get_user import get_current_user

router = APIRouter(prefix="/auto-coupons", tags=["Auto Coupons"])


@router.get("/me", response_model=ResponseMessage[List[UserAutoCouponOut]])
async def route_my_auto_coupons(
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    redemptions = await get_user_auto_coupons(db, user.id)
    data = [UserAutoCouponOut.from_redemption(r) for r in redemptions]
    return {"message": "Auto coupons fetched successfully", "data": data}


@router.post("/rules", response_model=ResponseMessage[AutoCouponRuleOut], status_code=201)
@require_role(["admin"])
async def route_create_rule(
    payload: AutoCouponRuleCreate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    rule = await create_rule(db, payload, _user)
    return {"message": "Rule created successfully", "data": rule}


@router.get("/rules", response_model=ResponseMessage[AutoCouponRuleListOut])
@require_role(["admin"])
async def route_list_rules(
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    data = await list_rules(db, page=page, limit=limit, is_active=is_active)
    return {"message": "Rules fetched successfully", "data": data}


@router.get("/rules/{rule_id}", response_model=ResponseMessage[AutoCouponRuleOut])
@require_role(["admin"])
async def route_get_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    rule = await get_rule(db, rule_id)
    return {"message": "Rule fetched successfully", "data": rule}


@router.put("/rules/{rule_id}", response_model=ResponseMessage[AutoCouponRuleOut])
@require_role(["admin"])
async def route_update_rule(
    rule_id: int,
    payload: AutoCouponRuleUpdate,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    rule = await update_rule(db, rule_id, payload, _user)
    return {"message": "Rule updated successfully", "data": rule}


@router.delete("/rules/{rule_id}", response_model=ResponseMessage[AutoCouponRuleOut])
@require_role(["admin"])
async def route_delete_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db),
    _user=Depends(get_current_user),
):
    rule = await delete_rule(db, rule_id, _user)
    return {"message": "Rule deactivated successfully", "data": rule}
