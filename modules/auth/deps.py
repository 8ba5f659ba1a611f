"""
Auth Module - Dependencies
===========================
FastAPI dependencies for user authentication and authorization.
These are injected into route handlers via Depends().

The token comes from an "Authorization: Bearer" header (mobile app) or the
auth_token cookie (web); its subject is the user id.
"""

from fastapi import Request, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from common.exceptions import AuthenticationError, AuthorizationError, raise_http
from common.helpers import safe_int
from common.security import decode_token
from modules.user.models import User


def _extract_token(request: Request):
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get("auth_token")


def get_current_active_user(request: Request, db: Session = Depends(get_db)):
    """
    Identify the current user from the bearer token or auth_token cookie.
    Returns User object or None.
    """
    token = _extract_token(request)
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user_id = safe_int(payload.get("sub"))
    if not user_id:
        return None

    return db.query(User).filter(User.id == user_id, User.is_active == True).first()


def require_login(user=Depends(get_current_active_user)):
    """Require any authenticated active user. Raises 401 if not logged in."""
    if not user:
        raise_http(AuthenticationError("login_required"))
    return user


def require_staff(user=Depends(get_current_active_user)):
    """Only allow staff/admin users. Raises 403 otherwise."""
    if not user or not user.is_admin:
        raise_http(AuthorizationError("Access denied"))
    return user
