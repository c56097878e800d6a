# shop/models/order_models.py
import enum
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, Numeric, DateTime, Enum, JSON,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shop.core.db import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    MOMO = "momo"
    VNPAY = "vnpay"
    BANK_TRANSFER = "bank_transfer"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    subtotal = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    shipping_fee = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    shipping_address = Column(JSON, nullable=False)
    note = Column(Text, nullable=True)

    status = Column(Enum(OrderStatus, name="order_status"), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    payment_status = Column(Enum(PaymentStatus, name="order_payment_status"), default=PaymentStatus.PENDING, nullable=False, index=True)

    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    coupon_code = Column(String(64), nullable=True)
    tracking_number = Column(String(100), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    shipping_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin", order_by="OrderItem.id")

    __table_args__ = (
        CheckConstraint(total_amount >= 0, name="check_order_total_non_negative"),
        CheckConstraint(discount_amount >= 0, name="check_order_discount_non_negative"),
        Index("ix_order_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, code='{self.order_code}', status='{self.status}')>"


class OrderItem(Base):
    """Line snapshot taken at checkout; never rewritten by later catalog edits."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    product_id = Column(Integer, nullable=False)
    product_name = Column(String(255), nullable=False)
    product_slug = Column(String(255), nullable=True)
    product_image = Column(String(500), nullable=True)
    category_id = Column(Integer, nullable=True)
    brand_id = Column(Integer, nullable=True)

    variant_id = Column(Integer, nullable=False)
    variant_sku = Column(String(100), nullable=False)
    variant_label = Column(String(255), nullable=True)
    variant_image = Column(String(500), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    original_price = Column(Numeric(14, 2), nullable=True)
    subtotal = Column(Numeric(14, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint(quantity > 0, name="check_order_item_quantity_positive"),
        CheckConstraint(unit_price >= 0, name="check_order_item_price_non_negative"),
    )
