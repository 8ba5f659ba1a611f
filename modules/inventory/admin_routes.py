"""
Inventory Admin Routes
========================
Manual stock adjustment for products and variants.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_staff
from modules.inventory.service import inventory_service

router = APIRouter(prefix="/api/admin/products", tags=["inventory-admin"])


class StockAdjustRequest(BaseModel):
    delta: int
    variantId: Optional[int] = None


@router.post("/{product_id}/stock")
def adjust_stock(
    product_id: int,
    body: StockAdjustRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_staff),
):
    """Signed change; a decrease below zero is rejected with 409."""
    stock = inventory_service.adjust_stock(db, product_id, body.delta, body.variantId, admin.id)
    db.commit()
    return {"success": True, "data": {"productId": product_id, "variantId": body.variantId, "stockQuantity": stock}}
