"""
Order Module - Customer Routes
================================
Checkout and the customer's own orders.

Endpoints:
  POST /api/orders                       : Checkout the active cart
  GET  /api/orders                       : List (status filter, paginated)
  GET  /api/orders/stats                 : Counts per status + total spent
  GET  /api/orders/{slug}                : Detail with status history
  GET  /api/orders/{slug}/track          : Tracking info
  POST /api/orders/{slug}/cancel         : Cancel (reason required)
  POST /api/orders/{slug}/return         : Return within the window
  POST /api/orders/{slug}/rate           : Rate a delivered order
"""

from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.order.service import order_service

router = APIRouter(prefix="/api/orders", tags=["orders"])


# ==========================================
# Schemas
# ==========================================

class CheckoutRequest(BaseModel):
    shippingAddressId: Optional[int] = None
    deliveryMethod: Optional[str] = None
    paymentMethod: Optional[str] = None
    notes: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class RatingRequest(BaseModel):
    rating: Optional[int] = None
    review: Optional[str] = None


# ==========================================
# 🧾 Checkout
# ==========================================

@router.post("")
def create_order(
    body: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    user_ip = request.client.host if request.client else None
    order, payment = order_service.place_order(db, user, body.model_dump(), user_ip=user_ip)

    if not payment.get("success"):
        return JSONResponse({
            "success": False,
            "error": payment.get("error") or "Payment initialization failed",
            "data": {"order": order.to_dict()},
        }, status_code=502)
    return JSONResponse({
        "success": True,
        "data": {"order": order.to_dict(), "payment": payment},
    }, status_code=201)


# ==========================================
# 📋 Queries
# ==========================================

@router.get("")
def list_orders(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    result = order_service.get_user_orders(db, user.id, status, page, limit)
    return {
        "success": True,
        "data": {
            "orders": [o.to_dict() for o in result["orders"]],
            "pagination": result["pagination"],
        },
    }


@router.get("/stats")
def order_stats(db: Session = Depends(get_db), user=Depends(require_login)):
    return {"success": True, "data": order_service.get_order_stats(db, user.id)}


@router.get("/{order_slug}")
def order_detail(order_slug: str, db: Session = Depends(get_db), user=Depends(require_login)):
    order = order_service.get_user_order(db, user.id, order_slug)
    return {"success": True, "data": order.to_dict(with_history=True)}


@router.get("/{order_slug}/track")
def track_order(order_slug: str, db: Session = Depends(get_db), user=Depends(require_login)):
    return {"success": True, "data": order_service.track_order(db, user.id, order_slug)}


# ==========================================
# ✋ Actions
# ==========================================

@router.post("/{order_slug}/cancel")
def cancel_order(
    order_slug: str,
    body: ReasonRequest,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    order = order_service.cancel_order(db, user.id, order_slug, body.reason)
    db.commit()
    order_service.notify_cancelled([order])
    return {"success": True, "message": "Order cancelled successfully", "data": order.to_dict()}


@router.post("/{order_slug}/return")
def return_order(
    order_slug: str,
    body: ReasonRequest,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    order = order_service.return_order(db, user.id, order_slug, body.reason)
    db.commit()
    return {"success": True, "message": "Return request submitted", "data": order.to_dict()}


@router.post("/{order_slug}/rate")
def rate_order(
    order_slug: str,
    body: RatingRequest,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    order = order_service.rate_order(db, user.id, order_slug, body.rating, body.review)
    db.commit()
    return {"success": True, "message": "Thank you for your rating", "data": order.to_dict()}
