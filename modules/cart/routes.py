"""
Cart Module - Routes
======================
JSON API over the user's active cart. Every response carries the full
recomputed cart.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.cart.service import cart_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


# ==========================================
# Schemas
# ==========================================

class AddItemRequest(BaseModel):
    productId: int
    variantId: Optional[int] = None
    quantity: int = Field(1, ge=1)


class UpdateItemRequest(BaseModel):
    productId: int
    variantId: Optional[int] = None
    quantity: int


class CouponRequest(BaseModel):
    code: str


class DeliveryMethodRequest(BaseModel):
    deliveryMethod: str


def _ok(cart, message: str = None):
    payload = {"success": True, "data": cart.to_dict()}
    if message:
        payload["message"] = message
    return payload


# ==========================================
# 🛒 Cart
# ==========================================

@router.get("")
def get_cart(db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.get_or_create_cart(db, user.id)
    db.commit()
    return _ok(cart)


@router.post("/items")
def add_item(body: AddItemRequest, db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.add_item(db, user.id, body.productId, body.quantity, body.variantId)
    db.commit()
    return _ok(cart, "Item added to cart")


@router.put("/items")
def update_item(body: UpdateItemRequest, db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.update_item_quantity(db, user.id, body.productId, body.quantity, body.variantId)
    db.commit()
    return _ok(cart, "Cart updated")


@router.delete("/items/{product_id}")
def remove_item(
    product_id: int,
    variantId: Optional[int] = None,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    cart = cart_service.remove_item(db, user.id, product_id, variantId)
    db.commit()
    return _ok(cart, "Item removed from cart")


@router.delete("")
def clear_cart(db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.clear(db, user.id) or cart_service.get_or_create_cart(db, user.id)
    db.commit()
    return _ok(cart, "Cart cleared")


@router.put("/delivery-method")
def set_delivery_method(body: DeliveryMethodRequest, db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.set_delivery_method(db, user.id, body.deliveryMethod)
    db.commit()
    return _ok(cart)


@router.get("/validate")
def validate_cart(db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.get_or_create_cart(db, user.id)
    result = cart_service.validate_stock(db, cart)
    db.commit()
    return {"success": True, "data": {"valid": result.valid, "outOfStock": result.out_of_stock}}


# ==========================================
# 🎟️ Coupons
# ==========================================

@router.post("/coupons")
def apply_coupon(body: CouponRequest, db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.apply_coupon(db, user.id, body.code)
    db.commit()
    return _ok(cart, "Coupon applied")


@router.delete("/coupons/{code}")
def remove_coupon(code: str, db: Session = Depends(get_db), user=Depends(require_login)):
    cart = cart_service.remove_coupon(db, user.id, code)
    db.commit()
    return _ok(cart, "Coupon removed")
