# shop/schemas/order_schemas.py
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List, Literal
from datetime import datetime
from typing_extensions import Annotated

from shop.models.order_models import OrderStatus, PaymentStatus, PaymentMethod
from shop.schemas.response_schemas import Pagination

NonNegativeDecimal = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]


# -------------------------------------------------------------------------
# Requests
# -------------------------------------------------------------------------
class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=r"^\+?[0-9]{9,15}$")
    address: str = Field(..., min_length=1, max_length=255)
    ward: Optional[str] = None
    district: Optional[str] = None
    city: str = Field(..., min_length=1, max_length=100)
    country: str = "VN"


class OrderCreate(BaseModel):
    payment_method: PaymentMethod
    shipping_address: ShippingAddress
    coupon_code: Optional[str] = Field(default=None, max_length=64)
    note: Optional[str] = Field(default=None, max_length=500)
    shipping_fee: Optional[NonNegativeDecimal] = None


class OrderStatusUpdate(BaseModel):
    # pending is never a valid target
    status: Literal["confirmed", "processing", "shipping", "delivered", "cancelled", "refunded"]
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderListQuery(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    sort: Literal["created_at", "-created_at", "total_amount", "-total_amount"] = "-created_at"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


# -------------------------------------------------------------------------
# Responses
# -------------------------------------------------------------------------
class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_slug: Optional[str] = None
    product_image: Optional[str] = None
    variant_id: int
    variant_sku: str
    variant_label: Optional[str] = None
    variant_image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    original_price: Optional[Decimal] = None
    subtotal: Decimal

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    order_code: str
    user_id: int
    items: List[OrderItemOut]
    subtotal: Decimal
    shipping_fee: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    shipping_address: dict
    note: Optional[str] = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    coupon_code: Optional[str] = None
    tracking_number: Optional[str] = None
    cancellation_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    shipping_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrderCreatedOut(BaseModel):
    order: OrderOut
    requires_payment: bool


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination


class OrderStatisticsOut(BaseModel):
    total_orders: int
    total_revenue: Decimal
    pending: int = 0
    confirmed: int = 0
    processing: int = 0
    shipping: int = 0
    delivered: int = 0
    cancelled: int = 0
    refunded: int = 0
