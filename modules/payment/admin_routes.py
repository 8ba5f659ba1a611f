"""
Payment Admin Routes
======================
Ledger overview for staff: revenue summary and entries by status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from common.exceptions import ValidationError
from modules.auth.deps import require_staff
from modules.payment.ledger import payment_ledger
from modules.payment.models import LedgerStatus

router = APIRouter(prefix="/api/admin/payments", tags=["payment-admin"])


@router.get("/summary")
def payment_summary(db: Session = Depends(get_db), admin=Depends(require_staff)):
    return {
        "success": True,
        "data": {
            "totalRevenue": float(payment_ledger.total_revenue(db)),
            "byChannel": {k: float(v) for k, v in payment_ledger.revenue_by_channel(db).items()},
        },
    }


@router.get("")
def payments_by_status(
    status: str = LedgerStatus.PENDING_CONFIRMATION.value,
    db: Session = Depends(get_db),
    admin=Depends(require_staff),
):
    try:
        ledger_status = LedgerStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown payment status: {status}")
    entries = payment_ledger.get_by_status(db, ledger_status)
    return {"success": True, "data": [e.to_dict() for e in entries]}
