"""
Coupon Routes - Customer Facing
==================================
Coupons the current user can still use, optionally filtered by a subtotal.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.coupon.service import coupon_service

router = APIRouter(prefix="/api/coupons", tags=["coupon"])


@router.get("/available")
def available_coupons(
    subTotal: Optional[float] = Query(None),
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    coupons = coupon_service.get_available_coupons(db, me.id, subTotal)
    return {"success": True, "data": [c.to_dict() for c in coupons]}
