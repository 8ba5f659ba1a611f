"""
Payment Module - Reconciliation
================================
Applies a provider-verified payment to the ledger and the orders it covers.

Flow for a verified result:
  1. ledger lookup by reference       (missing -> fail closed)
  2. amount check in major units      (mismatch -> fail closed)
  3. provider failure                 -> ledger failed, orders cancelled, stock released
  4. provider success                 -> ledger confirmed (CAS), orders confirmed,
                                         cart cleared, progress markers stamped

Replays are safe: the CAS admits one winner, and every later call only
finishes the steps whose progress marker is still empty. Notifications are
collected on the result and sent by the caller after commit.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from sqlalchemy.orm import Session

from common.helpers import to_money
from common.notifications import ORDER_CONFIRMED, PAYMENT_FAILED
from modules.cart.service import cart_service, CartService
from modules.inventory.service import inventory_service, InventoryService
from modules.order.models import OrderStatus, PaymentStatus
from modules.payment.gateways import VerifiedPayment, VerifyStatus
from modules.payment.ledger import payment_ledger, PaymentLedger
from modules.payment.models import LedgerStatus, PaymentLedgerEntry

logger = logging.getLogger("corisio.reconciliation")


@dataclass
class ReconciliationResult:
    success: bool
    order_slugs: List[str] = field(default_factory=list)
    message: str = ""
    duplicate: bool = False
    anomaly: bool = False
    pending: bool = False
    # (user_id, event_type, order_slug) to send once the transaction commits
    notifications: List[Tuple[int, str, str]] = field(default_factory=list)


class ReconciliationService:

    def __init__(self, ledger: PaymentLedger, carts: CartService, inventory: InventoryService):
        self.ledger = ledger
        self.carts = carts
        self.inventory = inventory

    def reconcile(self, db: Session, verified: VerifiedPayment) -> ReconciliationResult:
        ref = verified.reference
        entry = self.ledger.get_by_ref(db, ref)
        if not entry:
            return self._anomaly(f"No ledger entry for reference {ref}", "Payment record not found")

        if verified.amount is not None and to_money(verified.amount) != to_money(entry.amount):
            return self._anomaly(
                f"Amount mismatch for {ref}: provider={verified.amount} ledger={entry.amount}",
                "Payment amount mismatch",
            )

        if verified.status == VerifyStatus.PENDING:
            logger.info(f"Reconcile {ref}: provider still pending")
            return ReconciliationResult(success=False, pending=True, order_slugs=entry.order_slugs,
                                        message="Payment is not yet complete")

        if verified.status == VerifyStatus.FAILED:
            return self._apply_failure(db, entry, verified)

        if verified.amount is None:
            return self._anomaly(f"Provider reported success for {ref} without an amount",
                                 "Payment amount mismatch")
        return self._apply_success(db, entry, verified)

    # ==========================================
    # ✅ Success
    # ==========================================

    def _apply_success(self, db: Session, entry: PaymentLedgerEntry,
                       verified: VerifiedPayment) -> ReconciliationResult:
        ref = entry.transaction_ref
        duplicate = False
        if not self.ledger.compare_and_set(db, ref, LedgerStatus.PENDING_CONFIRMATION, LedgerStatus.CONFIRMED):
            db.refresh(entry)
            if entry.payment_status != LedgerStatus.CONFIRMED:
                return self._anomaly(
                    f"Success reported for {ref} but ledger is {entry.payment_status}",
                    "Payment could not be applied",
                )
            duplicate = True
            if entry.is_settled:
                logger.info(f"Reconcile {ref}: already confirmed, nothing to do")
                return ReconciliationResult(success=True, duplicate=True, order_slugs=entry.order_slugs,
                                            message="Payment already verified")
            logger.warning(f"Reconcile {ref}: confirmed but not fully settled, healing")

        result = ReconciliationResult(success=True, duplicate=duplicate, message="Payment verified successfully")
        orders = self.ledger.orders_for(db, entry)

        if not entry.orders_settled_at:
            for order in orders:
                if order.payment_status == PaymentStatus.COMPLETED:
                    continue
                order.process_payment(ref, verified.transaction_id, order.total_amount)
                result.notifications.append((order.user_id, ORDER_CONFIRMED, order.order_slug))
            self.ledger.mark_progress(db, entry, "orders_settled_at")

        if not entry.cart_cleared_at:
            cart = self.carts.clear(db, entry.user_id)
            if cart is not None:
                self.carts.deactivate(db, cart)
            self.ledger.mark_progress(db, entry, "cart_cleared_at")

        result.order_slugs = entry.order_slugs or [o.order_slug for o in orders]
        logger.info(f"Reconcile {ref}: confirmed orders={result.order_slugs} duplicate={duplicate}")
        return result

    # ==========================================
    # ❌ Failure
    # ==========================================

    def _apply_failure(self, db: Session, entry: PaymentLedgerEntry,
                       verified: VerifiedPayment) -> ReconciliationResult:
        ref = entry.transaction_ref
        reason = str(verified.raw.get("gateway_response") or verified.raw.get("message") or "Payment failed")
        duplicate = False
        if not self.ledger.compare_and_set(db, ref, LedgerStatus.PENDING_CONFIRMATION, LedgerStatus.FAILED,
                                           failure_reason=reason):
            db.refresh(entry)
            if entry.payment_status == LedgerStatus.CONFIRMED:
                return self._anomaly(
                    f"Failure reported for already confirmed {ref}",
                    "Payment could not be applied",
                )
            duplicate = True

        result = ReconciliationResult(success=False, duplicate=duplicate, order_slugs=entry.order_slugs,
                                      message=f"Payment failed: {reason}")
        for order in self.ledger.orders_for(db, entry):
            if (order.order_status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)
                    and order.payment_status != PaymentStatus.COMPLETED):
                order.mark_payment_failed(f"Payment failed: {reason}")
                result.notifications.append((order.user_id, PAYMENT_FAILED, order.order_slug))
            if order.order_status == OrderStatus.CANCELLED:
                self.inventory.release_for_order(db, order)
        db.flush()
        logger.info(f"Reconcile {ref}: failed ({reason}) duplicate={duplicate}")
        return result

    def _anomaly(self, detail: str, message: str) -> ReconciliationResult:
        logger.error(f"Reconciliation anomaly: {detail}")
        return ReconciliationResult(success=False, anomaly=True, message=message)


reconciliation_service = ReconciliationService(payment_ledger, cart_service, inventory_service)
