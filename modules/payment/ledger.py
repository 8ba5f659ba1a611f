"""
Payment Module - Ledger
========================
Append/transition operations on payment_ledger.

Rules:
  - exactly one row per initialize() call, written before the provider is
    contacted so the reference is always resolvable from a callback
  - status changes are compare-and-set UPDATEs; a caller that loses the
    race sees rowcount 0 and re-reads the row
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from common.exceptions import ValidationError
from common.helpers import now_utc, to_money
from modules.order.models import Order
from modules.payment.models import (
    PaymentLedgerEntry, LedgerStatus, PaymentChannel, REFERENCE_PREFIX,
)

logger = logging.getLogger("corisio.ledger")


class PaymentLedger:

    # ==========================================
    # ✍️ Write
    # ==========================================

    def log_purchase_pending(
        self, db: Session, channel: str, user_id: int, meta: dict, amount, transaction_ref: str,
    ) -> PaymentLedgerEntry:
        if not transaction_ref or not transaction_ref.startswith(REFERENCE_PREFIX):
            raise ValidationError(f"Transaction reference must start with {REFERENCE_PREFIX}")
        if self.get_by_ref(db, transaction_ref):
            raise ValidationError(f"Transaction reference already logged: {transaction_ref}")

        entry = PaymentLedgerEntry(
            user_id=user_id,
            amount=to_money(amount),
            transaction_ref=transaction_ref,
            payment_channel=PaymentChannel.from_provider(channel).value,
            payment_status=LedgerStatus.PENDING_CONFIRMATION.value,
            meta=dict(meta or {}),
        )
        db.add(entry)
        db.flush()
        logger.info(f"Ledger: {transaction_ref} pending ({entry.payment_channel}, {entry.amount}) orders={entry.order_ids}")
        return entry

    def initialization_failed(self, db: Session, entry: PaymentLedgerEntry, reason: str) -> bool:
        """
        The provider session could not be opened. The entry becomes failed and
        every order it covers is flagged unpaid with a history note.
        """
        moved = self.compare_and_set(
            db, entry.transaction_ref, LedgerStatus.PENDING_CONFIRMATION, LedgerStatus.FAILED,
            failure_reason=reason,
        )
        if not moved:
            return False
        for order in self.orders_for(db, entry):
            order.mark_payment_unpaid(f"Unpaid: {reason}")
        db.flush()
        logger.warning(f"Ledger: {entry.transaction_ref} initialization failed: {reason}")
        return True

    def compare_and_set(
        self, db: Session, transaction_ref: str,
        expected: LedgerStatus, target: LedgerStatus, **values,
    ) -> bool:
        """Move an entry from `expected` to `target` in one conditional UPDATE."""
        changes = {PaymentLedgerEntry.payment_status: target.value, PaymentLedgerEntry.updated_at: now_utc()}
        if target == LedgerStatus.CONFIRMED:
            changes[PaymentLedgerEntry.confirmed_at] = now_utc()
        for key, value in values.items():
            changes[getattr(PaymentLedgerEntry, key)] = value

        updated = db.query(PaymentLedgerEntry).filter(
            PaymentLedgerEntry.transaction_ref == transaction_ref,
            PaymentLedgerEntry.payment_status == expected.value,
        ).update(changes, synchronize_session="fetch")
        return updated == 1

    def mark_progress(self, db: Session, entry: PaymentLedgerEntry, marker: str):
        setattr(entry, marker, now_utc())
        db.flush()

    # ==========================================
    # 🔍 Read
    # ==========================================

    def get_by_ref(self, db: Session, transaction_ref: str) -> Optional[PaymentLedgerEntry]:
        return db.query(PaymentLedgerEntry).filter(
            PaymentLedgerEntry.transaction_ref == transaction_ref,
        ).first()

    def orders_for(self, db: Session, entry: PaymentLedgerEntry) -> List[Order]:
        ids = entry.order_ids
        if not ids:
            return []
        return db.query(Order).filter(Order.id.in_(ids)).order_by(Order.id).all()

    def get_user_history(
        self, db: Session, user_id: int, status: Optional[str] = None,
        page: int = 1, per_page: int = 20,
    ):
        q = db.query(PaymentLedgerEntry).filter(PaymentLedgerEntry.user_id == user_id)
        if status:
            q = q.filter(PaymentLedgerEntry.payment_status == status)
        total = q.count()
        entries = (
            q.order_by(PaymentLedgerEntry.created_at.desc(), PaymentLedgerEntry.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return entries, total

    def get_by_status(self, db: Session, status: LedgerStatus) -> List[PaymentLedgerEntry]:
        return db.query(PaymentLedgerEntry).filter(
            PaymentLedgerEntry.payment_status == status.value,
        ).order_by(PaymentLedgerEntry.created_at.desc()).all()

    def total_revenue(self, db: Session) -> Decimal:
        total = db.query(func.coalesce(func.sum(PaymentLedgerEntry.amount), 0)).filter(
            PaymentLedgerEntry.payment_status == LedgerStatus.CONFIRMED.value,
        ).scalar()
        return to_money(total)

    def revenue_by_channel(self, db: Session) -> Dict[str, Decimal]:
        rows = db.query(
            PaymentLedgerEntry.payment_channel, func.sum(PaymentLedgerEntry.amount),
        ).filter(
            PaymentLedgerEntry.payment_status == LedgerStatus.CONFIRMED.value,
        ).group_by(PaymentLedgerEntry.payment_channel).all()
        return {channel: to_money(amount) for channel, amount in rows}


payment_ledger = PaymentLedger()
