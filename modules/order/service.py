"""
Order Module - Service Layer
===============================
Checkout (cart -> order -> stock reservation -> payment), customer order
queries and actions, admin status management.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from config.settings import DELIVERY_FEE, TAX_PERCENT
from common.exceptions import ConflictError, NotFoundError, ValidationError
from common.helpers import generate_order_number, generate_order_slug, to_money
from common.notifications import notify_order_event, ORDER_PLACED, ORDER_CANCELLED
from modules.cart.service import cart_service, CartService
from modules.coupon.service import coupon_service, CouponService
from modules.customer.service import address_service
from modules.inventory.service import inventory_service, InventoryService
from modules.order.models import (
    Order, OrderItem, OrderAppliedCoupon, OrderStatus, PaymentStatus, DeliveryMethod,
)
from modules.payment.gateways import CASH_ON_DELIVERY
from modules.payment.ledger import payment_ledger
from modules.payment.models import LedgerStatus
from modules.payment.service import payment_service, PaymentService
from modules.pricing.calculator import compute_tax

logger = logging.getLogger("corisio.order")

MAX_IDENTIFIER_ATTEMPTS = 10


class OrderService:

    def __init__(self, carts: CartService, coupons: CouponService,
                 inventory: InventoryService, payments: PaymentService):
        self.carts = carts
        self.coupons = coupons
        self.inventory = inventory
        self.payments = payments

    # ==========================================
    # 🧾 Checkout
    # ==========================================

    def checkout(self, db: Session, user, data: dict) -> Order:
        """
        Build a pending order from the user's active cart:
        1. Validate input, address and payment method
        2. Re-check live stock and applied coupons
        3. Freeze items and coupons, compute tax / service charge / totals
        4. Reserve stock (conditional decrement per line)
        The cart stays active until the payment is confirmed. Flushes only.
        """
        delivery_method = data.get("deliveryMethod")
        payment_method = (data.get("paymentMethod") or "").lower()
        address_id = data.get("shippingAddressId")
        if not delivery_method or not payment_method:
            raise ValidationError("Missing required fields")
        try:
            delivery_method = DeliveryMethod(delivery_method)
        except ValueError:
            raise ValidationError("Delivery method must be pickup or delivery")
        if delivery_method == DeliveryMethod.DELIVERY and not address_id:
            raise ValidationError("Missing required fields")
        if not self.payments.is_supported_method(payment_method):
            raise ValidationError("Unsupported payment provider")

        address = None
        if address_id:
            address = address_service.get_user_address(db, user.id, address_id)
            if not address:
                raise NotFoundError("Address not found")

        cart = self.carts.get_active_cart(db, user.id)
        if not cart or not cart.items:
            raise ValidationError("Cart is empty")

        stock = self.carts.validate_stock(db, cart)
        if not stock.valid:
            raise ValidationError(f"Some items are out of stock: {', '.join(stock.out_of_stock)}")

        cart.recompute_totals()
        for applied in cart.applied_coupons:
            coupon = self.coupons.find_by_code(db, applied.code)
            reason = "Invalid or expired coupon" if not coupon else \
                self.coupons.check(db, coupon, user.id, cart.subtotal, cart.items)
            if reason:
                raise ValidationError(f"Coupon {applied.code}: {reason}")

        order = Order(
            order_number=self._unique_order_number(db),
            order_slug=self._unique_order_slug(db),
            user_id=user.id,
            order_status=OrderStatus.PENDING,
            shipping_address_id=address.id if address else None,
            shipping_address_text=address.full_address if address else None,
            delivery_method=delivery_method.value,
            notes=data.get("notes"),
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            delivery_fee=DELIVERY_FEE if delivery_method == DeliveryMethod.DELIVERY else 0,
            service_charge=0,
            tax=0,
            discount=0,
        )
        for item in cart.items:
            order.items.append(OrderItem(
                product_id=item.product_id,
                variant_id=item.variant_id,
                name=item.name,
                variant_name=item.variant_name,
                category=item.category,
                unit_price=item.unit_price,
                quantity=item.quantity,
            ))
        for applied in cart.applied_coupons:
            order.applied_coupons.append(OrderAppliedCoupon(
                code=applied.code,
                promo_type=applied.promo_type,
                discount_value=applied.discount_value,
                applied_at=applied.applied_at,
            ))

        order.recompute_totals()
        order.tax = compute_tax(order.subtotal, TAX_PERCENT)
        order.service_charge = self.payments.gateway.compute_fee(payment_method, order.subtotal)
        order.recompute_totals()
        order.seed_history()

        db.add(order)
        db.flush()
        self.inventory.reserve_items(db, order.items)
        logger.info(f"Order {order.order_number} created for user {user.id}: total={order.total_amount}")
        return order

    def place_order(self, db: Session, user, data: dict, user_ip: Optional[str] = None) -> Tuple[Order, Dict[str, Any]]:
        """
        Full checkout, committed in phases:
        order + stock  ->  coupon usage  ->  payment session (or COD confirmation).
        The order survives a failed payment initialization (flagged unpaid).
        """
        try:
            order = self.checkout(db, user, data)
            db.commit()
        except Exception:
            db.rollback()
            raise

        for applied in order.applied_coupons:
            self.coupons.increment_usage(db, applied.code, user.id)
        db.commit()

        payment = self.payments.initialize_order_payment(
            db, [order], user, order.payment_method, user_ip=user_ip,
        )
        if payment.get("success") and order.payment_method == CASH_ON_DELIVERY:
            order.update_status(OrderStatus.CONFIRMED, "Cash on delivery order confirmed", "system")
            cart = self.carts.clear(db, user.id)
            if cart is not None:
                self.carts.deactivate(db, cart)
        db.commit()

        notify_order_event(user.id, ORDER_PLACED, order.order_slug)
        return order, payment

    def _unique_order_number(self, db: Session) -> str:
        for _ in range(MAX_IDENTIFIER_ATTEMPTS):
            number = generate_order_number()
            if not db.query(Order.id).filter(Order.order_number == number).first():
                return number
        raise ConflictError("Could not allocate an order number, please retry")

    def _unique_order_slug(self, db: Session) -> str:
        for _ in range(MAX_IDENTIFIER_ATTEMPTS):
            slug = generate_order_slug()
            if not db.query(Order.id).filter(Order.order_slug == slug).first():
                return slug
        raise ConflictError("Could not allocate an order reference, please retry")

    # ==========================================
    # 📋 Customer queries
    # ==========================================

    def get_user_orders(self, db: Session, user_id: int, status: Optional[str] = None,
                        page: int = 1, limit: int = 20) -> Dict[str, Any]:
        q = db.query(Order).filter(Order.user_id == user_id)
        if status and status != "all":
            q = q.filter(Order.order_status == status)
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = q.count()
        orders = (
            q.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "orders": orders,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def get_user_order(self, db: Session, user_id: int, order_slug: str) -> Order:
        order = db.query(Order).filter(Order.order_slug == order_slug, Order.user_id == user_id).first()
        if not order:
            raise NotFoundError("Order not found")
        return order

    def track_order(self, db: Session, user_id: int, order_slug: str) -> dict:
        order = self.get_user_order(db, user_id, order_slug)
        return {
            "orderNumber": order.order_number,
            "orderSlug": order.order_slug,
            "orderStatus": order.order_status,
            "trackingNumber": order.tracking_number,
            "carrier": order.carrier,
            "estimatedDelivery": order.estimated_delivery.isoformat() if order.estimated_delivery else None,
            "actualDelivery": order.actual_delivery.isoformat() if order.actual_delivery else None,
            "statusHistory": [h.to_dict() for h in order.status_history],
        }

    def get_order_stats(self, db: Session, user_id: int) -> dict:
        rows = db.query(Order.order_status, func.count(Order.id)).filter(
            Order.user_id == user_id,
        ).group_by(Order.order_status).all()
        by_status = {s.value: 0 for s in OrderStatus}
        by_status.update({status: count for status, count in rows})

        spent = db.query(func.coalesce(func.sum(Order.total_amount), 0)).filter(
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.COMPLETED,
        ).scalar()
        return {
            "totalOrders": sum(by_status.values()),
            "byStatus": by_status,
            "totalSpent": float(to_money(spent)),
        }

    # ==========================================
    # ✋ Customer actions
    # ==========================================

    def cancel_order(self, db: Session, user_id: int, order_slug: str, reason: str) -> Order:
        order = self.get_user_order(db, user_id, order_slug)
        order.cancel(reason, "customer")
        self._after_cancel(db, order)
        logger.info(f"Order {order.order_number} cancelled by user {user_id}: {reason}")
        return order

    def return_order(self, db: Session, user_id: int, order_slug: str, reason: str) -> Order:
        order = self.get_user_order(db, user_id, order_slug)
        order.return_order(reason, "customer")
        db.flush()
        logger.info(f"Order {order.order_number} returned by user {user_id}: {reason}")
        return order

    def rate_order(self, db: Session, user_id: int, order_slug: str, rating: int,
                   review: Optional[str] = None) -> Order:
        order = self.get_user_order(db, user_id, order_slug)
        order.add_rating(rating, review)
        db.flush()
        return order

    def _after_cancel(self, db: Session, order: Order):
        """Give the stock back and close a still-pending ledger entry."""
        self.inventory.release_for_order(db, order)
        if order.payment_reference:
            entry = payment_ledger.get_by_ref(db, order.payment_reference)
            if entry and all(
                o.order_status == OrderStatus.CANCELLED for o in payment_ledger.orders_for(db, entry)
            ):
                payment_ledger.compare_and_set(
                    db, entry.transaction_ref, LedgerStatus.PENDING_CONFIRMATION, LedgerStatus.CANCELLED,
                    failure_reason=order.cancellation_reason,
                )
        db.flush()

    # ==========================================
    # 🛠️ Admin
    # ==========================================

    def get_all_orders(self, db: Session, status: Optional[str] = None,
                       page: int = 1, limit: int = 50) -> Dict[str, Any]:
        q = db.query(Order)
        if status and status != "all":
            q = q.filter(Order.order_status == status)
        total = q.count()
        orders = (
            q.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
            .all()
        )
        return {"orders": orders, "total": total}

    def get_by_slug(self, db: Session, order_slug: str) -> Order:
        order = db.query(Order).filter(Order.order_slug == order_slug).first()
        if not order:
            raise NotFoundError("Order not found")
        return order

    def admin_update_status(self, db: Session, order_slug: str, status: str,
                            note: str = "", admin=None) -> Order:
        order = self.get_by_slug(db, order_slug)
        updated_by = f"admin:{admin.id}" if admin else "admin"
        order.update_status(status, note, updated_by)
        if order.order_status == OrderStatus.CANCELLED:
            self._after_cancel(db, order)
        db.flush()
        logger.info(f"Order {order.order_number} -> {status} by {updated_by}")
        return order

    def admin_add_tracking(self, db: Session, order_slug: str, tracking_number: str,
                           carrier: Optional[str] = None, estimated_delivery=None) -> Order:
        if not tracking_number:
            raise ValidationError("Tracking number is required")
        order = self.get_by_slug(db, order_slug)
        order.add_tracking_info(tracking_number, carrier, estimated_delivery)
        db.flush()
        return order

    def notify_cancelled(self, orders: List[Order]):
        for order in orders:
            notify_order_event(order.user_id, ORDER_CANCELLED, order.order_slug)


order_service = OrderService(cart_service, coupon_service, inventory_service, payment_service)
