"""
Payment Module - Models
========================
Payment ledger: one row per payment attempt, keyed by the transaction
reference sent to the provider (PAY_{orderId}_{unixMillis}).

Status lifecycle:
    pending_confirmation -> confirmed | failed | cancelled

Transitions are compare-and-set UPDATEs (see ledger.py); the progress
markers (confirmed_at, orders_settled_at, cart_cleared_at) let a replayed
confirmation finish whatever a crashed one left undone.
"""

import enum
from sqlalchemy import Column, Integer, String, Numeric, Text, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from config.database import Base
from common.exceptions import ValidationError

REFERENCE_PREFIX = "PAY_"


class LedgerStatus(str, enum.Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentChannel(str, enum.Enum):
    PAYSTACK = "PAYSTACK"
    PALMPAY = "PALMPAY"
    OPAY = "OPAY"
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"

    @classmethod
    def from_provider(cls, provider: str) -> "PaymentChannel":
        try:
            return cls((provider or "").upper())
        except ValueError:
            raise ValidationError(f"Unknown payment channel: {provider}")


class PaymentLedgerEntry(Base):
    __tablename__ = "payment_ledger"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    transaction_ref = Column(String(64), unique=True, nullable=False, index=True)
    payment_channel = Column(String, nullable=False)
    payment_status = Column(String, default=LedgerStatus.PENDING_CONFIRMATION, nullable=False, index=True)
    meta = Column(JSON, nullable=False, default=dict)     # order_ids, order_slugs, provider context
    failure_reason = Column(Text, nullable=True)

    # Progress markers
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    orders_settled_at = Column(DateTime(timezone=True), nullable=True)
    cart_cleared_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_payment_ledger_user_status", "user_id", "payment_status"),
    )

    @validates("transaction_ref")
    def _check_reference(self, key, value):
        if not value or not str(value).startswith(REFERENCE_PREFIX):
            raise ValidationError(f"Transaction reference must start with {REFERENCE_PREFIX}")
        if self.transaction_ref and self.transaction_ref != value:
            raise ValidationError("Transaction reference is immutable")
        return value

    @property
    def order_ids(self) -> list:
        return list((self.meta or {}).get("order_ids") or [])

    @property
    def order_slugs(self) -> list:
        return list((self.meta or {}).get("order_slugs") or [])

    @property
    def is_settled(self) -> bool:
        """Every side effect of a confirmation has been applied."""
        return bool(self.confirmed_at and self.orders_settled_at and self.cart_cleared_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": float(self.amount),
            "transactionRef": self.transaction_ref,
            "paymentChannel": self.payment_channel,
            "paymentStatus": self.payment_status,
            "orderIds": self.order_ids,
            "orderSlugs": self.order_slugs,
            "failureReason": self.failure_reason,
            "confirmedAt": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PaymentLedgerEntry {self.transaction_ref} {self.payment_status}>"
