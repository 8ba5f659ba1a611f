"""
Coupon Service
================
Validate coupons against a cart and count their usage.

Validation chain (first failure wins, reason is shown to the user as-is):
  1. Coupon is active
  2. Now within [start_date_time, end_date_time)
  3. Total usage limit
  4. Per-user usage limit (orders of this user carrying the code)
  5. Minimum order value
  6. Product / category restrictions
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from common.exceptions import ValidationError
from common.helpers import now_utc, as_utc, to_money
from modules.coupon.models import Coupon, PromoType
from modules.order.models import Order, OrderAppliedCoupon
from modules.pricing.calculator import normalize_promo_type

logger = logging.getLogger("corisio.coupon")


class CouponValidationError(ValidationError):
    """Raised when coupon validation fails."""
    pass


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def parse_promo_type(value) -> PromoType:
    """Accept "Fixed", "flat", "Percentage", "%"... and store the canonical type."""
    raw = (value or PromoType.PERCENTAGE.value).strip().lower()
    if not any(word in raw for word in ("percentage", "%", "fixed", "flat")):
        raise ValidationError("Promo type must be percentage or fixed")
    return PromoType(normalize_promo_type(raw))


class CouponService:

    # ------------------------------------------
    # Lookup
    # ------------------------------------------

    def find_by_code(self, db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.coupon_code == normalize_code(code)).first()

    def count_user_usage(self, db: Session, code: str, user_id: int) -> int:
        return (
            db.query(sa_func.count(sa_func.distinct(Order.id)))
            .join(OrderAppliedCoupon, OrderAppliedCoupon.order_id == Order.id)
            .filter(Order.user_id == user_id, OrderAppliedCoupon.code == normalize_code(code))
            .scalar()
        ) or 0

    # ------------------------------------------
    # Validate coupon (raises CouponValidationError)
    # ------------------------------------------

    def validate(self, db: Session, coupon: Coupon, user_id: int, cart_subtotal, cart_items: Iterable):
        if not coupon.is_active:
            raise CouponValidationError("Coupon is not active")

        now = now_utc()
        if now < as_utc(coupon.start_date_time):
            raise CouponValidationError("Coupon is not yet valid")
        if now >= as_utc(coupon.end_date_time):
            raise CouponValidationError("Coupon has expired")

        if coupon.usage_limit is not None and coupon.current_usage >= coupon.usage_limit:
            raise CouponValidationError("Coupon usage limit reached")

        if coupon.per_user_limit:
            used = self.count_user_usage(db, coupon.coupon_code, user_id)
            if used >= coupon.per_user_limit:
                raise CouponValidationError("You have reached the usage limit for this coupon")

        subtotal = to_money(cart_subtotal)
        if coupon.minimum_order_value and subtotal < to_money(coupon.minimum_order_value):
            raise CouponValidationError(
                f"Minimum order value of ₦{to_money(coupon.minimum_order_value):,.2f} required"
            )

        items = list(cart_items)
        products = {int(p) for p in (coupon.applicable_products or [])}
        categories = set(coupon.applicable_categories or [])
        if products and not any(item.product_id in products for item in items):
            raise CouponValidationError("Coupon not applicable to cart items")
        if categories and not any(item.category in categories for item in items):
            raise CouponValidationError("Coupon not applicable to cart items")

    def check(self, db: Session, coupon: Coupon, user_id: int, cart_subtotal, cart_items) -> Optional[str]:
        """Like validate(), but returns the failure reason (or None)."""
        try:
            self.validate(db, coupon, user_id, cart_subtotal, cart_items)
        except CouponValidationError as e:
            return e.message
        return None

    # ------------------------------------------
    # Usage counting
    # ------------------------------------------

    def increment_usage(self, db: Session, code: str, user_id: int) -> bool:
        """
        Count one use. Call once per created order, after it is committed.
        Single UPDATE so concurrent checkouts don't lose increments.
        """
        updated = db.query(Coupon).filter(Coupon.coupon_code == normalize_code(code)).update(
            {Coupon.current_usage: Coupon.current_usage + 1},
            synchronize_session="fetch",
        )
        if updated:
            logger.info(f"Coupon {normalize_code(code)} used by user {user_id}")
        else:
            logger.warning(f"Coupon {normalize_code(code)} vanished before usage could be counted")
        return bool(updated)

    # ------------------------------------------
    # Listing
    # ------------------------------------------

    def get_available_coupons(self, db: Session, user_id: int, cart_subtotal=None) -> List[Coupon]:
        """Active, in-window, under-limit coupons this user can still use."""
        now = now_utc()
        candidates = (
            db.query(Coupon)
            .filter(
                Coupon.is_active == True,
                Coupon.start_date_time <= now,
                Coupon.end_date_time > now,
            )
            .order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .all()
        )

        available = []
        for coupon in candidates:
            if not coupon.is_available:
                continue
            if coupon.per_user_limit and self.count_user_usage(db, coupon.coupon_code, user_id) >= coupon.per_user_limit:
                continue
            if cart_subtotal is not None and coupon.minimum_order_value:
                if to_money(cart_subtotal) < to_money(coupon.minimum_order_value):
                    continue
            available.append(coupon)
        return available

    # ------------------------------------------
    # Admin
    # ------------------------------------------

    def create_coupon(self, db: Session, data: dict) -> Coupon:
        code = normalize_code(data.get("coupon_code"))
        if not code:
            raise ValidationError("Coupon code is required")
        if self.find_by_code(db, code):
            raise ValidationError(f"Coupon {code} already exists")
        value = Decimal(str(data.get("discount_value") or 0))
        if value <= 0:
            raise ValidationError("Discount value must be positive")
        promo_type = parse_promo_type(data.get("promo_type"))
        if promo_type == PromoType.PERCENTAGE and value > 100:
            raise ValidationError("Percentage discount must be between 0 and 100")

        coupon = Coupon(
            coupon_code=code,
            promotion_name=data.get("promotion_name") or code,
            description=data.get("description"),
            promo_type=promo_type.value,
            discount_value=value,
            usage_limit=data.get("usage_limit"),
            per_user_limit=data.get("per_user_limit", 1),
            minimum_order_value=data.get("minimum_order_value"),
            applicable_categories=data.get("applicable_categories") or [],
            applicable_products=data.get("applicable_products") or [],
            start_date_time=data.get("start_date_time") or now_utc(),
            end_date_time=data["end_date_time"],
            is_active=data.get("is_active", True),
        )
        db.add(coupon)
        db.flush()
        logger.info(f"Coupon {code} created")
        return coupon


coupon_service = CouponService()
