# shop/models/auto_coupon_models.py
import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Enum, JSON, ForeignKey,
    UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shop.core.db import Base
from shop.models.coupon_models import DiscountType


class TriggerType(str, enum.Enum):
    ORDER_COUNT = "order_count"
    TOTAL_SPENT = "total_spent"
    FIRST_ORDER = "first_order"


class AutoCouponRule(Base):
    __tablename__ = "auto_coupon_rules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=True)

    trigger_type = Column(Enum(TriggerType, name="trigger_type"), nullable=False)
    required_order_count = Column(Integer, nullable=True)
    required_total_spent = Column(Numeric(14, 2), nullable=True)

    # template for the coupon minted when the rule fires
    code_prefix = Column(String(20), nullable=False)
    discount_type = Column(Enum(DiscountType, name="discount_type"), nullable=False)
    discount_value = Column(Numeric(14, 2), nullable=False)
    min_order_value = Column(Numeric(14, 2), nullable=True)
    max_discount_amount = Column(Numeric(14, 2), nullable=True)
    usage_limit_per_user = Column(Integer, nullable=False, default=1)
    valid_days = Column(Integer, nullable=False, default=30)
    applicable_products = Column(JSON, nullable=True)
    applicable_categories = Column(JSON, nullable=True)
    applicable_brands = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    max_redemptions = Column(Integer, nullable=True)
    redemption_count = Column(Integer, nullable=False, default=0)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class UserCouponRedemption(Base):
    __tablename__ = "user_coupon_redemptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("auto_coupon_rules.id", ondelete="CASCADE"), nullable=False)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    trigger_type = Column(Enum(TriggerType, name="trigger_type"), nullable=False)
    trigger_value = Column(Numeric(14, 2), nullable=True)
    triggered_at = Column(DateTime(timezone=True), server_default=func.now())

    rule = relationship("AutoCouponRule", lazy="selectin")
    coupon = relationship("Coupon", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "rule_id", name="uq_redemption_user_rule"),
    )
