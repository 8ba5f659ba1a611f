"""
Cart Module - Service Layer
==============================
Cart management: get/create, add/remove items, coupons, stock validation.
Every mutation ends with _save(): refresh the service-charge estimate,
recompute totals, push the TTL forward and flush (version-checked).
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config.settings import CART_TTL_DAYS, DELIVERY_FEE, DEFAULT_PAYMENT_PROVIDER
from common.exceptions import ConflictError, NotFoundError, ValidationError
from common.helpers import now_utc
from modules.cart.models import Cart, CartItem, CartCoupon
from modules.catalog.models import Product, ProductVariant, ProductStatus
from modules.coupon.service import coupon_service, CouponService, CouponValidationError, normalize_code
from modules.inventory.service import inventory_service, InventoryService
from modules.order.models import DeliveryMethod
from modules.payment.gateways import payment_gateway

logger = logging.getLogger("corisio.cart")


@dataclass
class StockValidation:
    valid: bool
    out_of_stock: List[str] = field(default_factory=list)


class CartService:

    def __init__(
        self,
        coupons: CouponService,
        inventory: InventoryService,
        fee_estimator: Callable = None,
    ):
        self.coupons = coupons
        self.inventory = inventory
        self.fee_estimator = fee_estimator

    # ==========================================
    # 🛒 Get / Create
    # ==========================================

    def get_active_cart(self, db: Session, user_id: int) -> Optional[Cart]:
        """Active cart for the user, or None. An expired cart is deactivated on sight."""
        cart = db.query(Cart).filter(Cart.user_id == user_id, Cart.is_active == True).first()
        if cart and cart.is_expired:
            logger.info(f"Cart #{cart.id} of user {user_id} expired")
            self.deactivate(db, cart)
            return None
        return cart

    def get_or_create_cart(self, db: Session, user_id: int) -> Cart:
        cart = self.get_active_cart(db, user_id)
        if not cart:
            cart = Cart(
                user_id=user_id,
                is_active=True,
                delivery_fee=0,
                service_charge=0,
                expires_at=now_utc() + timedelta(days=CART_TTL_DAYS),
            )
            db.add(cart)
            cart.recompute_totals()
            self._flush(db)
        return cart

    def deactivate(self, db: Session, cart: Cart):
        cart.is_active = False
        self._flush(db)

    # ==========================================
    # ➕ Items
    # ==========================================

    def add_item(self, db: Session, user_id: int, product_id: int,
                 quantity: int = 1, variant_id: Optional[int] = None) -> Cart:
        if quantity is None or quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFoundError("Product not found")
        if product.status != ProductStatus.ACTIVE:
            raise ValidationError("Product is not available")

        variant = None
        if variant_id:
            variant = db.query(ProductVariant).filter(
                ProductVariant.id == variant_id, ProductVariant.product_id == product_id,
            ).first()
            if not variant:
                raise NotFoundError("Variant not found")

        available = variant.stock_quantity if variant else product.stock_quantity
        cart = self.get_or_create_cart(db, user_id)
        item = cart.find_item(product_id, variant_id)

        merged = quantity + (item.quantity if item else 0)
        if merged > available:
            raise ValidationError("Insufficient stock")

        if item:
            item.quantity = merged
            item.max_quantity = available
        else:
            cart.items.append(CartItem(
                product_id=product.id,
                variant_id=variant.id if variant else None,
                name=product.name,
                variant_name=variant.name if variant else None,
                category=product.category,
                unit_price=variant.effective_price if variant else product.sales_price,
                quantity=quantity,
                max_quantity=available,
            ))
        return self._save(db, cart)

    def remove_item(self, db: Session, user_id: int, product_id: int, variant_id: Optional[int] = None) -> Cart:
        cart = self._require_cart(db, user_id)
        item = cart.find_item(product_id, variant_id)
        if not item:
            raise NotFoundError("Item not found in cart")
        cart.items.remove(item)
        return self._save(db, cart)

    def update_item_quantity(self, db: Session, user_id: int, product_id: int,
                             quantity: int, variant_id: Optional[int] = None) -> Cart:
        """quantity <= 0 removes the line; above the recorded max fails."""
        if quantity <= 0:
            return self.remove_item(db, user_id, product_id, variant_id)

        cart = self._require_cart(db, user_id)
        item = cart.find_item(product_id, variant_id)
        if not item:
            raise NotFoundError("Item not found in cart")
        if quantity > item.max_quantity:
            raise ValidationError(f"Only {item.max_quantity} of {item.name} available")
        item.quantity = quantity
        return self._save(db, cart)

    def clear(self, db: Session, user_id: int) -> Optional[Cart]:
        """Empty the active cart. No-op (returns None) when there is none."""
        cart = self.get_active_cart(db, user_id)
        if not cart:
            return None
        cart.items.clear()
        cart.applied_coupons.clear()
        return self._save(db, cart)

    def set_delivery_method(self, db: Session, user_id: int, method: str) -> Cart:
        try:
            method = DeliveryMethod(method)
        except ValueError:
            raise ValidationError("Delivery method must be pickup or delivery")
        cart = self.get_or_create_cart(db, user_id)
        cart.delivery_method = method.value
        cart.delivery_fee = DELIVERY_FEE if method == DeliveryMethod.DELIVERY else 0
        return self._save(db, cart)

    # ==========================================
    # 🎟️ Coupons
    # ==========================================

    def apply_coupon(self, db: Session, user_id: int, code: str) -> Cart:
        code = normalize_code(code)
        if not code:
            raise ValidationError("Coupon code is required")

        cart = self._require_cart(db, user_id)
        if not cart.items:
            raise ValidationError("Cart is empty")
        if cart.has_coupon(code):
            raise CouponValidationError("Coupon already applied")

        coupon = self.coupons.find_by_code(db, code)
        if not coupon:
            raise CouponValidationError("Invalid or expired coupon")

        cart.recompute_totals()
        self.coupons.validate(db, coupon, user_id, cart.subtotal, cart.items)

        cart.applied_coupons.append(CartCoupon(
            code=coupon.coupon_code,
            promo_type=coupon.promo_type,
            discount_value=coupon.discount_value,
            applied_at=now_utc(),
        ))
        cart = self._save(db, cart)
        logger.info(f"Coupon {code} applied to cart #{cart.id} (discount {cart.discount})")
        return cart

    def remove_coupon(self, db: Session, user_id: int, code: str) -> Cart:
        code = normalize_code(code)
        cart = self._require_cart(db, user_id)
        applied = next((c for c in cart.applied_coupons if c.code == code), None)
        if not applied:
            raise NotFoundError("Coupon not applied to cart")
        cart.applied_coupons.remove(applied)
        return self._save(db, cart)

    # ==========================================
    # 📦 Stock
    # ==========================================

    def validate_stock(self, db: Session, cart: Cart) -> StockValidation:
        """Re-read live stock for every line. Lines that can't be filled are returned by name."""
        out_of_stock = []
        for item in cart.items:
            available = self.inventory.get_available_stock(db, item.product_id, item.variant_id)
            if available is None or available < item.quantity:
                label = f"{item.name} ({item.variant_name})" if item.variant_name else item.name
                out_of_stock.append(label)
        return StockValidation(valid=not out_of_stock, out_of_stock=out_of_stock)

    # ==========================================
    # 🧹 Expiry
    # ==========================================

    def expire_stale_carts(self, db: Session) -> int:
        """Deactivate active carts past their TTL. Returns the count."""
        count = db.query(Cart).filter(
            Cart.is_active == True,
            Cart.expires_at.isnot(None),
            Cart.expires_at < now_utc(),
        ).update({Cart.is_active: False}, synchronize_session=False)
        return count

    # ==========================================
    # 🔧 Internals
    # ==========================================

    def _require_cart(self, db: Session, user_id: int) -> Cart:
        cart = self.get_active_cart(db, user_id)
        if not cart:
            raise NotFoundError("Cart not found")
        return cart

    def _save(self, db: Session, cart: Cart) -> Cart:
        cart.recompute_totals()
        if self.fee_estimator:
            cart.service_charge = self.fee_estimator(cart.subtotal) if cart.items else 0
            cart.recompute_totals()
        cart.expires_at = now_utc() + timedelta(days=CART_TTL_DAYS)
        self._flush(db)
        return cart

    def _flush(self, db: Session):
        try:
            db.flush()
        except StaleDataError:
            db.rollback()
            raise ConflictError("Cart was updated by another request, please retry")


def estimate_service_charge(subtotal) -> int:
    return payment_gateway.compute_fee(DEFAULT_PAYMENT_PROVIDER, subtotal)


cart_service = CartService(coupon_service, inventory_service, estimate_service_charge)
