"""
Order Module - Models
======================
Order with a frozen per-item snapshot, an append-only status history and
the embedded payment info (payment_* columns).

Status lifecycle:
    pending -> confirmed -> processing -> shipped -> delivered
    side branches: cancelled, returned, refunded

All totals are recomputed from the item snapshot by recompute_totals(),
at creation and after every change; a stored total is never trusted.
"""

import enum
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Numeric, Text, ForeignKey, DateTime, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base
from config.settings import RETURN_WINDOW_DAYS, SHIPPING_ESTIMATE_DAYS
from common.exceptions import InvalidTransitionError, ValidationError
from common.helpers import now_utc, as_utc, to_money
from modules.pricing.calculator import compute_totals, compute_order_total


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    PAYSTACK = "paystack"
    PALMPAY = "palmpay"
    OPAY = "opay"
    CASH_ON_DELIVERY = "cash_on_delivery"


class DeliveryMethod(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


# Allowed next states. Cancellation has its own guard (can_cancel).
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.RETURNED},
    OrderStatus.CANCELLED: {OrderStatus.REFUNDED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),
}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(20), unique=True, nullable=False, index=True)
    order_slug = Column(String(8), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    order_status = Column(String, default=OrderStatus.PENDING, nullable=False, index=True)

    # Delivery
    shipping_address_id = Column(Integer, ForeignKey("addresses.id", ondelete="SET NULL"), nullable=True)
    shipping_address_text = Column(Text, nullable=True)       # snapshot at checkout
    delivery_method = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    # Payment info
    payment_method = Column(String, nullable=False)
    payment_status = Column(String, default=PaymentStatus.PENDING, nullable=False)
    payment_reference = Column(String, nullable=True, index=True)
    transaction_id = Column(String, nullable=True)
    payment_amount = Column(Numeric(14, 2), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Pricing (derived)
    subtotal = Column(Numeric(14, 2), default=0, nullable=False)
    delivery_fee = Column(Numeric(14, 2), default=0, nullable=False)
    service_charge = Column(Numeric(14, 2), default=0, nullable=False)
    tax = Column(Numeric(14, 2), default=0, nullable=False)
    discount = Column(Numeric(14, 2), default=0, nullable=False)
    total_amount = Column(Numeric(14, 2), default=0, nullable=False)

    # Tracking
    tracking_number = Column(String, nullable=True)
    carrier = Column(String, nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)

    # Cancellation / return / refund
    cancellation_reason = Column(String, nullable=True)
    cancelled_by = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    return_reason = Column(String, nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Numeric(14, 2), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    stock_released_at = Column(DateTime(timezone=True), nullable=True)

    # Rating
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    applied_coupons = relationship("OrderAppliedCoupon", back_populates="order", cascade="all, delete-orphan",
                                   order_by="OrderAppliedCoupon.id")
    status_history = relationship("OrderStatusLog", back_populates="order", cascade="all, delete-orphan",
                                  order_by="OrderStatusLog.id")
    shipping_address = relationship("Address", foreign_keys=[shipping_address_id])

    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_order_rating_range"),
    )

    # ------------------------------------------
    # Derived
    # ------------------------------------------

    @property
    def payment_info(self) -> dict:
        return {
            "method": self.payment_method,
            "paymentStatus": self.payment_status,
            "reference": self.payment_reference,
            "transactionId": self.transaction_id,
            "amount": float(self.payment_amount) if self.payment_amount is not None else None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }

    @property
    def can_cancel(self) -> bool:
        return (
            self.order_status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)
            and self.payment_status != PaymentStatus.COMPLETED
        )

    @property
    def can_return(self) -> bool:
        if self.order_status != OrderStatus.DELIVERED or not self.actual_delivery:
            return False
        return now_utc() - as_utc(self.actual_delivery) <= timedelta(days=RETURN_WINDOW_DAYS)

    # ------------------------------------------
    # Invariants
    # ------------------------------------------

    def recompute_totals(self):
        """subtotal/discount from the item snapshot, then the grand total."""
        pricing = compute_totals(self.items, self.applied_coupons)
        self.subtotal = pricing.subtotal
        self.discount = pricing.discount
        self.total_amount = compute_order_total(
            self.subtotal, self.delivery_fee, self.service_charge, self.tax, self.discount,
        )
        return self.total_amount

    def _log(self, status: str, note: str = "", updated_by: str = None):
        self.status_history.append(OrderStatusLog(
            status=status, note=note or None, updated_by=updated_by, created_at=now_utc(),
        ))

    def seed_history(self):
        if not self.status_history:
            self._log(OrderStatus.PENDING, "Order created")

    # ------------------------------------------
    # Transitions
    # ------------------------------------------

    def update_status(self, new_status: str, note: str = "", updated_by: str = None):
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {new_status}")
        current = OrderStatus(self.order_status)
        if target not in ORDER_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        if target == OrderStatus.CANCELLED:
            return self.cancel(note or "Cancelled", updated_by or "admin", force=True)
        if target == OrderStatus.RETURNED:
            return self.return_order(note or "Returned", updated_by or "admin")

        now = now_utc()
        if target == OrderStatus.SHIPPED and not self.estimated_delivery:
            self.estimated_delivery = now + timedelta(days=SHIPPING_ESTIMATE_DAYS)
        if target == OrderStatus.DELIVERED and not self.actual_delivery:
            self.actual_delivery = now
        if target == OrderStatus.REFUNDED:
            self._mark_refunded(now)

        self.order_status = target
        self._log(target, note, updated_by)
        self.recompute_totals()

    def process_payment(self, reference: str, transaction_id: str, amount):
        """Stamp a verified payment; pending orders move to confirmed."""
        now = now_utc()
        self.payment_status = PaymentStatus.COMPLETED
        self.payment_reference = reference
        self.transaction_id = transaction_id
        self.payment_amount = to_money(amount)
        self.paid_at = now
        if self.order_status == OrderStatus.PENDING:
            self.order_status = OrderStatus.CONFIRMED
            self._log(OrderStatus.CONFIRMED, "Payment confirmed", "system")
        self.recompute_totals()

    def mark_payment_failed(self, note: str):
        """Provider reported failure: the order is cancelled with payment failed."""
        if self.order_status not in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
            raise InvalidTransitionError(OrderStatus(self.order_status).value, OrderStatus.CANCELLED.value)
        now = now_utc()
        self.payment_status = PaymentStatus.FAILED
        self.order_status = OrderStatus.CANCELLED
        self.cancellation_reason = note
        self.cancelled_by = "system"
        self.cancelled_at = now
        self._log(OrderStatus.CANCELLED, note, "system")
        self.recompute_totals()

    def mark_payment_unpaid(self, note: str):
        """Initialization never reached the provider; the order stays pending, unpaid."""
        self.payment_status = PaymentStatus.FAILED
        self._log(self.order_status, note, "system")
        self.recompute_totals()

    def cancel(self, reason: str, cancelled_by: str, force: bool = False):
        """
        Customer cancellation requires can_cancel. With force (admin), an order
        whose payment already completed is cancelled and refunded.
        """
        if not reason:
            raise ValidationError("Cancellation reason is required")
        if not force and not self.can_cancel:
            raise ValidationError("Order cannot be cancelled")
        if self.order_status not in (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING):
            raise InvalidTransitionError(OrderStatus(self.order_status).value, OrderStatus.CANCELLED.value)

        now = now_utc()
        self.order_status = OrderStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        self.cancelled_at = now
        if self.payment_status == PaymentStatus.COMPLETED:
            self._mark_refunded(now)
        elif self.payment_status == PaymentStatus.PENDING:
            self.payment_status = PaymentStatus.CANCELLED
        self._log(OrderStatus.CANCELLED, f"Order cancelled: {reason}", cancelled_by)
        self.recompute_totals()

    def return_order(self, reason: str, returned_by: str):
        if not reason:
            raise ValidationError("Return reason is required")
        if not self.can_return:
            raise ValidationError("Order cannot be returned")
        self.order_status = OrderStatus.RETURNED
        self.return_reason = reason
        self.returned_at = now_utc()
        self._log(OrderStatus.RETURNED, f"Order returned: {reason}", returned_by)
        self.recompute_totals()

    def add_rating(self, rating: int, review: str = None):
        if self.order_status != OrderStatus.DELIVERED:
            raise ValidationError("Can only rate delivered orders")
        if rating is None or not 1 <= int(rating) <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        self.rating = int(rating)
        self.review = review
        self.reviewed_at = now_utc()
        self.recompute_totals()

    def add_tracking_info(self, tracking_number: str, carrier: str = None, estimated_delivery=None):
        self.tracking_number = tracking_number
        if carrier:
            self.carrier = carrier
        if estimated_delivery:
            self.estimated_delivery = estimated_delivery
        self.recompute_totals()

    def _mark_refunded(self, when):
        if self.payment_status == PaymentStatus.COMPLETED:
            self.payment_status = PaymentStatus.REFUNDED
            self.refund_amount = self.recompute_totals()
            self.refunded_at = when

    # ------------------------------------------
    # Serialization
    # ------------------------------------------

    def to_dict(self, with_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "orderNumber": self.order_number,
            "orderSlug": self.order_slug,
            "orderStatus": self.order_status,
            "deliveryMethod": self.delivery_method,
            "shippingAddress": self.shipping_address_text,
            "notes": self.notes,
            "paymentInfo": self.payment_info,
            "items": [i.to_dict() for i in self.items],
            "appliedCoupons": [c.to_dict() for c in self.applied_coupons],
            "subtotal": float(self.subtotal),
            "deliveryFee": float(self.delivery_fee),
            "serviceCharge": float(self.service_charge),
            "tax": float(self.tax),
            "discount": float(self.discount),
            "totalAmount": float(self.total_amount),
            "trackingNumber": self.tracking_number,
            "carrier": self.carrier,
            "estimatedDelivery": self.estimated_delivery.isoformat() if self.estimated_delivery else None,
            "actualDelivery": self.actual_delivery.isoformat() if self.actual_delivery else None,
            "rating": self.rating,
            "review": self.review,
            "canCancel": self.can_cancel,
            "canReturn": self.can_return,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if with_history:
            data["statusHistory"] = [h.to_dict() for h in self.status_history]
        return data

    def __repr__(self):
        return f"<Order {self.order_number} {self.order_status}>"


class OrderItem(Base):
    """Frozen copy of a cart line at checkout time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    name = Column(String, nullable=False)
    variant_name = Column(String, nullable=True)
    category = Column(String, nullable=True)
    unit_price = Column(Numeric(14, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity"),
    )

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "name": self.name,
            "variantName": self.variant_name,
            "unitPrice": float(self.unit_price),
            "quantity": self.quantity,
            "lineTotal": float(self.line_total),
        }


class OrderAppliedCoupon(Base):
    __tablename__ = "order_coupons"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(20), nullable=False, index=True)
    promo_type = Column(String, nullable=False)
    discount_value = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    applied_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="applied_coupons")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "promoType": self.promo_type,
            "discountValue": float(self.discount_value),
            "discountAmount": float(self.discount_amount),
        }


class OrderStatusLog(Base):
    """Append-only audit trail; rows are never updated or deleted."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    note = Column(Text, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "note": self.note,
            "updatedBy": self.updated_by,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }
