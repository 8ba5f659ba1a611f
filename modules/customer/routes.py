"""
Address Routes
================
Address book CRUD for the current user.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.customer.service import address_service

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


# ==========================================
# Schemas
# ==========================================

class AddressRequest(BaseModel):
    label: Optional[str] = None
    full_name: str = ""
    address: str = ""
    phone: str = ""
    state: str = ""
    city: Optional[str] = None
    zip_code: Optional[str] = None
    is_default: bool = False


@router.get("")
def list_addresses(db: Session = Depends(get_db), me=Depends(require_login)):
    return {"success": True, "data": [a.to_dict() for a in address_service.list_addresses(db, me.id)]}


@router.post("")
def add_address(body: AddressRequest, db: Session = Depends(get_db), me=Depends(require_login)):
    addr = address_service.add_address(db, me.id, body.model_dump())
    db.commit()
    return JSONResponse({"success": True, "data": addr.to_dict()}, status_code=201)


@router.put("/{address_id}/default")
def set_default_address(address_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    addr = address_service.set_default(db, me.id, address_id)
    db.commit()
    return {"success": True, "data": addr.to_dict()}


@router.delete("/{address_id}")
def delete_address(address_id: int, db: Session = Depends(get_db), me=Depends(require_login)):
    promoted = address_service.delete_address(db, me.id, address_id)
    db.commit()
    return {
        "success": True,
        "message": "Address deleted",
        "data": {"newDefault": promoted.to_dict() if promoted else None},
    }
