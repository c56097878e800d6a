# shop/schemas/payment_schemas.py
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List, Literal, Any
from datetime import datetime
from typing_extensions import Annotated

from shop.models.order_models import PaymentMethod
from shop.models.payment_models import PaymentRecordStatus
from shop.schemas.response_schemas import Pagination

PositiveDecimal = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]


class PaymentCreate(BaseModel):
    order_id: int
    payment_method: Optional[Literal["momo", "vnpay", "bank_transfer"]] = None
    return_url: Optional[str] = Field(default=None, max_length=500)
    language: Literal["vi", "en"] = "vi"


class PaymentRefund(BaseModel):
    amount: Optional[PositiveDecimal] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class MomoCallback(BaseModel):
    """Fields MoMo posts to the IPN URL and appends to the redirect URL."""
    partnerCode: str
    orderId: str
    requestId: str
    amount: int
    orderInfo: str = ""
    orderType: str = ""
    transId: Any = ""
    resultCode: int
    message: str = ""
    payType: str = ""
    responseTime: Any = ""
    extraData: str = ""
    signature: str


class PaymentOut(BaseModel):
    id: int
    order_id: int
    order_code: str
    user_id: int
    payment_method: PaymentMethod
    amount: Decimal
    currency: str
    status: PaymentRecordStatus
    transaction_id: Optional[str] = None
    payment_metadata: Optional[dict] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    initiated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentVerifyOut(BaseModel):
    payment_id: int
    order_id: int
    order_code: str
    payment_method: PaymentMethod
    amount: Decimal
    status: PaymentRecordStatus
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_expired: bool


class PaymentListOut(BaseModel):
    payments: List[PaymentOut]
    pagination: Pagination
