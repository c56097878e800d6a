# shop/models/coupon_models.py
import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Enum, JSON, ForeignKey,
    CheckConstraint, Index
)
from sqlalchemy.sql import func
from shop.core.db import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)  # stored upper-case
    description = Column(String(255), nullable=True)

    discount_type = Column(Enum(DiscountType, name="discount_type"), nullable=False)
    discount_value = Column(Numeric(14, 2), nullable=False)
    max_discount_amount = Column(Numeric(14, 2), nullable=True)  # percentage only
    min_order_value = Column(Numeric(14, 2), nullable=True)

    usage_limit = Column(Integer, nullable=True)  # None = unlimited
    usage_count = Column(Integer, nullable=False, default=0)
    usage_limit_per_user = Column(Integer, nullable=True)

    # empty / None = no restriction
    applicable_products = Column(JSON, nullable=True)
    applicable_categories = Column(JSON, nullable=True)
    applicable_brands = Column(JSON, nullable=True)
    applicable_users = Column(JSON, nullable=True)
    excluded_users = Column(JSON, nullable=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(usage_count >= 0, name="check_coupon_usage_non_negative"),
        CheckConstraint(discount_value >= 0, name="check_coupon_value_non_negative"),
    )

    def __repr__(self):
        return f"<Coupon(code='{self.code}', used={self.usage_count}/{self.usage_limit})>"


class UserCouponUsage(Base):
    """One row per redemption; deleted again when the order is cancelled."""
    __tablename__ = "user_coupon_usages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    discount_amount = Column(Numeric(14, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_coupon_usage_user_coupon", "user_id", "coupon_id"),
    )
