"""
Coupon Module - Models
========================
Promotion codes applied to carts and carried onto orders.

Features:
  - Percentage or fixed amount (unknown types price as percentage)
  - Total usage limit + per-user limit (counted from the user's orders)
  - Date window [start_date_time, end_date_time)
  - Minimum order value
  - Product / category restrictions
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, Numeric, JSON, Index,
)
from sqlalchemy.sql import func
from config.database import Base
from common.helpers import now_utc, as_utc


class PromoType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    coupon_code = Column(String(20), unique=True, nullable=False, index=True)
    promotion_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    promo_type = Column(String, default=PromoType.PERCENTAGE, nullable=False)
    discount_value = Column(Numeric(14, 2), nullable=False)

    # Usage limits (None = unlimited)
    usage_limit = Column(Integer, nullable=True)
    per_user_limit = Column(Integer, default=1, nullable=True)
    current_usage = Column(Integer, default=0, nullable=False)

    minimum_order_value = Column(Numeric(14, 2), nullable=True)

    # Restrictions (empty = whole cart)
    applicable_categories = Column(JSON, default=list, nullable=False)
    applicable_products = Column(JSON, default=list, nullable=False)

    start_date_time = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    end_date_time = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("ix_coupon_code_active", "coupon_code", "is_active"),
    )

    @property
    def is_expired(self) -> bool:
        return now_utc() >= as_utc(self.end_date_time)

    @property
    def is_available(self) -> bool:
        if not self.is_active or self.is_expired:
            return False
        if now_utc() < as_utc(self.start_date_time):
            return False
        if self.usage_limit is not None and self.current_usage >= self.usage_limit:
            return False
        return True

    @property
    def usage_remaining(self):
        """None means unlimited."""
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - self.current_usage)

    def to_dict(self) -> dict:
        return {
            "code": self.coupon_code,
            "promotionName": self.promotion_name,
            "description": self.description,
            "promoType": self.promo_type,
            "discountValue": float(self.discount_value),
            "minimumOrderValue": float(self.minimum_order_value) if self.minimum_order_value is not None else None,
            "endDateTime": self.end_date_time.isoformat() if self.end_date_time else None,
            "usageRemaining": self.usage_remaining,
        }

    def __repr__(self):
        return f"<Coupon {self.coupon_code}>"
