"""
Customer Module - Address Service
==================================
Address lookup for checkout, and default-address bookkeeping.
Deleting the default address promotes the most recent remaining one,
in the same transaction as the delete.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from common.exceptions import NotFoundError, ValidationError
from modules.customer.models import Address, AddressLabel

logger = logging.getLogger("corisio.customer")


class AddressService:

    def list_addresses(self, db: Session, user_id: int) -> List[Address]:
        return (
            db.query(Address)
            .filter(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.id.desc())
            .all()
        )

    def get_user_address(self, db: Session, user_id: int, address_id: int) -> Optional[Address]:
        return db.query(Address).filter(
            Address.id == address_id, Address.user_id == user_id,
        ).first()

    def add_address(self, db: Session, user_id: int, data: dict) -> Address:
        label = data.get("label") or AddressLabel.HOME
        if label not in {l.value for l in AddressLabel}:
            raise ValidationError("Label must be Home, Shop, Office, or Other")
        for field in ("full_name", "address", "phone", "state"):
            if not (data.get(field) or "").strip():
                raise ValidationError(f"{field} is required")

        # First address becomes the default
        has_any = db.query(Address.id).filter(Address.user_id == user_id).first() is not None
        make_default = bool(data.get("is_default")) or not has_any
        if make_default:
            self._clear_default(db, user_id)

        addr = Address(
            user_id=user_id,
            label=label,
            full_name=data["full_name"].strip(),
            address=data["address"].strip(),
            phone=data["phone"].strip(),
            state=data["state"].strip(),
            city=(data.get("city") or "").strip() or None,
            zip_code=(data.get("zip_code") or "").strip() or None,
            is_default=make_default,
        )
        db.add(addr)
        db.flush()
        return addr

    def set_default(self, db: Session, user_id: int, address_id: int) -> Address:
        addr = self.get_user_address(db, user_id, address_id)
        if not addr:
            raise NotFoundError("Address not found")
        self._clear_default(db, user_id)
        addr.is_default = True
        db.flush()
        return addr

    def delete_address(self, db: Session, user_id: int, address_id: int) -> Optional[Address]:
        """
        Delete an address. If it was the default, the most recently created
        remaining address becomes the default. Returns the promoted address.
        """
        addr = self.get_user_address(db, user_id, address_id)
        if not addr:
            raise NotFoundError("Address not found")

        was_default = addr.is_default
        db.delete(addr)
        db.flush()
        logger.info(f"Address #{address_id} deleted for user {user_id} (default={was_default})")

        if not was_default:
            return None

        promoted = (
            db.query(Address)
            .filter(Address.user_id == user_id)
            .order_by(Address.created_at.desc(), Address.id.desc())
            .first()
        )
        if promoted:
            promoted.is_default = True
            db.flush()
            logger.info(f"Address #{promoted.id} promoted to default for user {user_id}")
        return promoted

    def _clear_default(self, db: Session, user_id: int):
        db.query(Address).filter(
            Address.user_id == user_id, Address.is_default == True,
        ).update({"is_default": False}, synchronize_session="fetch")


address_service = AddressService()
