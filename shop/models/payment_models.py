# shop/models/payment_models.py
import enum
from sqlalchemy import (
    Column, Integer, String, ForeignKey, Numeric, DateTime, Enum, JSON, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shop.core.db import Base
from shop.models.order_models import PaymentMethod


class PaymentRecordStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


OPEN_PAYMENT_STATUSES = (
    PaymentRecordStatus.PENDING,
    PaymentRecordStatus.PROCESSING,
    PaymentRecordStatus.COMPLETED,
)
AWAITING_RESULT_STATUSES = (PaymentRecordStatus.PENDING, PaymentRecordStatus.PROCESSING)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order_code = Column(String(32), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    payment_method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="VND")

    status = Column(Enum(PaymentRecordStatus, name="payment_record_status"), default=PaymentRecordStatus.PENDING, nullable=False, index=True)

    transaction_id = Column(String(100), nullable=True)
    gateway_request_id = Column(String(100), nullable=True, index=True)
    gateway_response = Column(JSON, nullable=True)
    # `metadata` is reserved on declarative classes
    payment_metadata = Column("metadata", JSON, nullable=True)

    error_code = Column(String(50), nullable=True)
    error_message = Column(String(500), nullable=True)

    refund_amount = Column(Numeric(14, 2), nullable=True)
    refund_reason = Column(String(500), nullable=True)

    initiated_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", lazy="selectin")

    __table_args__ = (
        Index("ix_payment_order_status", "order_id", "status"),
        Index("ix_payment_code_request", "order_code", "gateway_request_id"),
    )
