"""
Cart Module - Models
=====================
One active cart per user (partial unique index), its lines and applied coupons.
Carts are deactivated, not deleted, once converted to an order or expired.
Concurrent writers are detected through the `version` column.
"""

from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime,
    Index, UniqueConstraint, CheckConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base
from common.helpers import now_utc, as_utc
from modules.pricing.calculator import compute_totals


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    delivery_method = Column(String, nullable=True)
    subtotal = Column(Numeric(14, 2), default=0, nullable=False)
    discount = Column(Numeric(14, 2), default=0, nullable=False)
    delivery_fee = Column(Numeric(14, 2), default=0, nullable=False)
    service_charge = Column(Numeric(14, 2), default=0, nullable=False)
    total_amount = Column(Numeric(14, 2), default=0, nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan",
                         order_by="CartItem.id")
    applied_coupons = relationship("CartCoupon", back_populates="cart", cascade="all, delete-orphan",
                                   order_by="CartCoupon.id")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            "uq_cart_active_user", "user_id", unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and now_utc() >= as_utc(self.expires_at)

    @property
    def total_items(self) -> int:
        return sum(i.quantity for i in self.items)

    def find_item(self, product_id: int, variant_id=None):
        for item in self.items:
            if item.product_id == product_id and (item.variant_id or None) == (variant_id or None):
                return item
        return None

    def has_coupon(self, code: str) -> bool:
        return any(c.code == code for c in self.applied_coupons)

    def recompute_totals(self):
        pricing = compute_totals(self.items, self.applied_coupons, self.delivery_fee, self.service_charge)
        self.subtotal = pricing.subtotal
        self.discount = pricing.discount
        self.total_amount = pricing.total_amount
        return pricing

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "items": [i.to_dict() for i in self.items],
            "appliedCoupons": [c.to_dict() for c in self.applied_coupons],
            "deliveryMethod": self.delivery_method,
            "subtotal": float(self.subtotal or 0),
            "discount": float(self.discount or 0),
            "deliveryFee": float(self.delivery_fee or 0),
            "serviceCharge": float(self.service_charge or 0),
            "totalAmount": float(self.total_amount or 0),
            "totalItems": self.total_items,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }

    def __repr__(self):
        return f"<Cart {self.id} user={self.user_id} active={self.is_active}>"


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True)
    name = Column(String, nullable=False)
    variant_name = Column(String, nullable=True)
    category = Column(String, nullable=True)
    unit_price = Column(Numeric(14, 2), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    max_quantity = Column(Integer, nullable=False)          # stock seen when added
    line_total = Column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    cart = relationship("Cart", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_cart_item_quantity"),
    )

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "name": self.name,
            "variantName": self.variant_name,
            "category": self.category,
            "unitPrice": float(self.unit_price),
            "quantity": self.quantity,
            "maxQuantity": self.max_quantity,
            "lineTotal": float(self.line_total or 0),
        }


class CartCoupon(Base):
    __tablename__ = "cart_coupons"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(20), nullable=False)
    promo_type = Column(String, nullable=False)
    discount_value = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    applied_at = Column(DateTime(timezone=True), default=now_utc)

    cart = relationship("Cart", back_populates="applied_coupons")

    __table_args__ = (
        UniqueConstraint("cart_id", "code", name="uq_cart_coupon_code"),
    )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "promoType": self.promo_type,
            "discountValue": float(self.discount_value),
            "discountAmount": float(self.discount_amount or 0),
        }
