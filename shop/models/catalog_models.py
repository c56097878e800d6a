# shop/models/catalog_models.py
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, CheckConstraint, Index,
    ForeignKey, DateTime, func
)
from sqlalchemy.orm import relationship
from shop.core.db import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), index=True, nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    image_url = Column(String(500), nullable=True)
    # categories and brands are managed by the catalog admin, only their ids are needed here
    category_id = Column(Integer, nullable=True, index=True)
    brand_id = Column(Integer, nullable=True, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False)

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan", lazy="selectin")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}')>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(100), unique=True, nullable=False)
    label = Column(String(255), nullable=True)  # shade / volume / size
    image_url = Column(String(500), nullable=True)
    price = Column(Numeric(14, 2), nullable=False)
    original_price = Column(Numeric(14, 2), nullable=True)
    stock_quantity = Column(Integer, default=0, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    product = relationship("Product", back_populates="variants", lazy="selectin")

    __table_args__ = (
        CheckConstraint(price >= 0, name="check_variant_price_non_negative"),
        CheckConstraint(stock_quantity >= 0, name="check_variant_stock_non_negative"),
        Index("ix_variant_product_id_id", "product_id", "id"),
    )
