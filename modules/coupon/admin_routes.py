"""
Coupon Admin Routes
=====================
Create and list promotions.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.coupon.models import Coupon
from modules.coupon.service import coupon_service

router = APIRouter(prefix="/api/admin/coupons", tags=["coupon-admin"])


# ==========================================
# Schemas
# ==========================================

class CouponCreateRequest(BaseModel):
    coupon_code: str
    promotion_name: Optional[str] = None
    description: Optional[str] = None
    promo_type: str = "percentage"
    discount_value: Decimal
    usage_limit: Optional[int] = None
    per_user_limit: int = 1
    minimum_order_value: Optional[Decimal] = None
    applicable_categories: List[str] = []
    applicable_products: List[int] = []
    start_date_time: Optional[datetime] = None
    end_date_time: datetime
    is_active: bool = True


@router.get("")
def list_coupons(db: Session = Depends(get_db), admin=Depends(require_staff)):
    coupons = db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
    return {"success": True, "data": [c.to_dict() for c in coupons]}


@router.post("")
def create_coupon(body: CouponCreateRequest, db: Session = Depends(get_db), admin=Depends(require_staff)):
    coupon = coupon_service.create_coupon(db, body.model_dump())
    db.commit()
    return JSONResponse({"success": True, "data": coupon.to_dict()}, status_code=201)
