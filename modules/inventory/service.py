"""
Inventory Module - Service
===========================
Stock counters on products and variants.

Every change goes through a single conditional UPDATE
(... SET stock_quantity = stock_quantity - :qty WHERE id = :id AND stock_quantity >= :qty),
so two checkouts racing for the last units cannot both win; the loser sees
rowcount 0 and gets InsufficientInventoryError. Admin stock edits use the
same path.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from common.exceptions import InsufficientInventoryError, NotFoundError, ValidationError
from common.helpers import now_utc
from modules.catalog.models import Product, ProductVariant

logger = logging.getLogger("corisio.inventory")


class InventoryService:

    # ==========================================
    # 🔍 Lookup
    # ==========================================

    def get_available_stock(self, db: Session, product_id: int, variant_id: Optional[int] = None) -> Optional[int]:
        """Authoritative stock for a product or variant. None if it no longer exists."""
        if variant_id:
            row = db.query(ProductVariant.stock_quantity).filter(
                ProductVariant.id == variant_id,
                ProductVariant.product_id == product_id,
            ).first()
        else:
            row = db.query(Product.stock_quantity).filter(Product.id == product_id).first()
        return row[0] if row else None

    # ==========================================
    # ➖ Decrement / ➕ Increment
    # ==========================================

    def _target(self, variant_id: Optional[int]):
        return ProductVariant if variant_id else Product

    def decrement(self, db: Session, product_id: int, variant_id: Optional[int], quantity: int, label: str = ""):
        """Atomically take `quantity` units. Raises InsufficientInventoryError if not enough."""
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        model = self._target(variant_id)
        row_id = variant_id or product_id
        updated = db.query(model).filter(
            model.id == row_id,
            model.stock_quantity >= quantity,
        ).update(
            {model.stock_quantity: model.stock_quantity - quantity},
            synchronize_session="fetch",
        )
        if updated == 0:
            logger.info(f"Stock decrement rejected: {model.__tablename__}#{row_id} qty={quantity}")
            raise InsufficientInventoryError(label or f"product #{product_id}")

    def increment(self, db: Session, product_id: int, variant_id: Optional[int], quantity: int):
        if quantity <= 0:
            return
        model = self._target(variant_id)
        row_id = variant_id or product_id
        db.query(model).filter(model.id == row_id).update(
            {model.stock_quantity: model.stock_quantity + quantity},
            synchronize_session="fetch",
        )

    # ==========================================
    # 📦 Order-level reserve / release
    # ==========================================

    def reserve_items(self, db: Session, items: Iterable):
        """Decrement stock for every line (product_id, variant_id, quantity, name)."""
        for item in items:
            self.decrement(db, item.product_id, item.variant_id, item.quantity, label=item.name)
        db.flush()

    def release_for_order(self, db: Session, order) -> bool:
        """
        Return an order's units to stock, once. The order's stock_released_at
        stamp guards against a second release on retries.
        """
        if order.stock_released_at is not None:
            return False
        for item in order.items:
            self.increment(db, item.product_id, item.variant_id, item.quantity)
        order.stock_released_at = now_utc()
        db.flush()
        logger.info(f"Stock released for order {order.order_number}")
        return True

    # ==========================================
    # 🛠️ Admin adjustment
    # ==========================================

    def adjust_stock(self, db: Session, product_id: int, delta: int,
                     variant_id: Optional[int] = None, admin_id: Optional[int] = None) -> int:
        """Apply a signed change. Negative deltas use the conditional decrement."""
        model = self._target(variant_id)
        if db.query(model.id).filter(model.id == (variant_id or product_id)).first() is None:
            raise NotFoundError("Product not found")

        if delta < 0:
            self.decrement(db, product_id, variant_id, -delta)
        elif delta > 0:
            self.increment(db, product_id, variant_id, delta)
        db.flush()

        stock = self.get_available_stock(db, product_id, variant_id)
        logger.info(f"Stock adjusted by admin {admin_id}: {model.__tablename__}#{variant_id or product_id} {delta:+d} -> {stock}")
        return stock


inventory_service = InventoryService()
