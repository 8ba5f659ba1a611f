"""
Order Module - Admin Routes
==============================
Order management for staff: list, status transitions, tracking.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.order.models import OrderStatus
from modules.order.service import order_service

router = APIRouter(prefix="/api/admin/orders", tags=["order-admin"])


# ==========================================
# Schemas
# ==========================================

class StatusUpdateRequest(BaseModel):
    status: str
    note: Optional[str] = ""


class TrackingRequest(BaseModel):
    trackingNumber: str
    carrier: Optional[str] = None
    estimatedDelivery: Optional[datetime] = None


@router.get("")
def admin_orders(
    status: str = Query(None),
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    admin=Depends(require_staff),
):
    result = order_service.get_all_orders(db, status=status, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "orders": [o.to_dict() for o in result["orders"]],
            "total": result["total"],
        },
    }


@router.get("/{order_slug}")
def admin_order_detail(order_slug: str, db: Session = Depends(get_db), admin=Depends(require_staff)):
    order = order_service.get_by_slug(db, order_slug)
    return {"success": True, "data": order.to_dict(with_history=True)}


@router.put("/{order_slug}/status")
def admin_update_status(
    order_slug: str,
    body: StatusUpdateRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_staff),
):
    order = order_service.admin_update_status(db, order_slug, body.status, body.note or "", admin)
    db.commit()
    if order.order_status == OrderStatus.CANCELLED:
        order_service.notify_cancelled([order])
    return {"success": True, "message": "Order status updated", "data": order.to_dict(with_history=True)}


@router.put("/{order_slug}/tracking")
def admin_add_tracking(
    order_slug: str,
    body: TrackingRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_staff),
):
    order = order_service.admin_add_tracking(
        db, order_slug, body.trackingNumber, body.carrier, body.estimatedDelivery,
    )
    db.commit()
    return {"success": True, "message": "Tracking info updated", "data": order.to_dict()}
