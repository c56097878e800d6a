# shop/schemas/coupon_schemas.py
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from typing_extensions import Annotated

from shop.models.coupon_models import DiscountType

PositiveDecimal = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]
NonNegativeDecimal = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    description: Optional[str] = Field(default=None, max_length=255)
    discount_type: DiscountType
    discount_value: PositiveDecimal
    max_discount_amount: Optional[PositiveDecimal] = None
    min_order_value: Optional[NonNegativeDecimal] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    usage_limit_per_user: Optional[int] = Field(default=None, ge=1)
    applicable_products: Optional[List[int]] = None
    applicable_categories: Optional[List[int]] = None
    applicable_brands: Optional[List[int]] = None
    applicable_users: Optional[List[int]] = None
    excluded_users: Optional[List[int]] = None
    start_date: datetime
    end_date: datetime
    is_active: bool = True


class CouponPreview(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    shipping_fee: Optional[NonNegativeDecimal] = None


class CouponOut(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = None
    min_order_value: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int
    usage_limit_per_user: Optional[int] = None
    applicable_products: Optional[List[int]] = None
    applicable_categories: Optional[List[int]] = None
    applicable_brands: Optional[List[int]] = None
    start_date: datetime
    end_date: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class CouponPreviewOut(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    subtotal: Decimal
    shipping_fee: Decimal
    discount_amount: Decimal
    total_amount: Decimal
