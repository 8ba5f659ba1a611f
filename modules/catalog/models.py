"""
Catalog Module - Models
========================
Product and ProductVariant. Stock counters live here and are only changed
through the conditional updates in modules.inventory.service.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


# ==========================================
# 📦 Product
# ==========================================

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True, index=True)
    sales_price = Column(Numeric(14, 2), nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    status = Column(String, default=ProductStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    def __repr__(self):
        return f"<Product {self.id} {self.name}>"


# ==========================================
# 🎨 Product Variant
# ==========================================

class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)                     # e.g. "Red / XL"
    sales_price = Column(Numeric(14, 2), nullable=True)       # None -> product price
    stock_quantity = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_variant_stock_non_negative"),
    )

    @property
    def effective_price(self):
        return self.sales_price if self.sales_price is not None else self.product.sales_price

    def __repr__(self):
        return f"<ProductVariant {self.id} {self.name}>"
