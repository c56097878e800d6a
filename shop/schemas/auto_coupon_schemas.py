# shop/schemas/auto_coupon_schemas.py
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from typing_extensions import Annotated

from shop.models.auto_coupon_models import TriggerType
from shop.models.coupon_models import DiscountType
from shop.schemas.coupon_schemas import CouponOut
from shop.schemas.response_schemas import Pagination

PositiveDecimal = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]
NonNegativeDecimal = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]


class AutoCouponRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    trigger_type: TriggerType
    required_order_count: Optional[int] = Field(default=None, ge=1)
    required_total_spent: Optional[PositiveDecimal] = None
    code_prefix: str = Field(..., min_length=2, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    discount_type: DiscountType
    discount_value: PositiveDecimal
    min_order_value: Optional[NonNegativeDecimal] = None
    max_discount_amount: Optional[PositiveDecimal] = None
    usage_limit_per_user: int = Field(default=1, ge=1)
    valid_days: int = Field(default=30, ge=1, le=365)
    applicable_products: Optional[List[int]] = None
    applicable_categories: Optional[List[int]] = None
    applicable_brands: Optional[List[int]] = None
    max_redemptions: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True


class AutoCouponRuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    required_order_count: Optional[int] = Field(default=None, ge=1)
    required_total_spent: Optional[PositiveDecimal] = None
    code_prefix: Optional[str] = Field(default=None, min_length=2, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[PositiveDecimal] = None
    min_order_value: Optional[NonNegativeDecimal] = None
    max_discount_amount: Optional[PositiveDecimal] = None
    usage_limit_per_user: Optional[int] = Field(default=None, ge=1)
    valid_days: Optional[int] = Field(default=None, ge=1, le=365)
    max_redemptions: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class AutoCouponRuleOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    trigger_type: TriggerType
    required_order_count: Optional[int] = None
    required_total_spent: Optional[Decimal] = None
    code_prefix: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_value: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    usage_limit_per_user: int
    valid_days: int
    is_active: bool
    max_redemptions: Optional[int] = None
    redemption_count: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AutoCouponRuleListOut(BaseModel):
    rules: List[AutoCouponRuleOut]
    pagination: Pagination


class UserAutoCouponOut(BaseModel):
    id: int
    rule_id: int
    trigger_type: TriggerType
    trigger_value: Optional[Decimal] = None
    triggered_at: Optional[datetime] = None
    rule_name: Optional[str] = None
    coupon: CouponOut

    model_config = {"from_attributes": True}

    @classmethod
    def from_redemption(cls, redemption):
        return cls(
            id=redemption.id,
            rule_id=redemption.rule_id,
            trigger_type=redemption.trigger_type,
            trigger_value=redemption.trigger_value,
            triggered_at=redemption.triggered_at,
            rule_name=redemption.rule.name if redemption.rule else None,
            coupon=CouponOut.model_validate(redemption.coupon),
        )
