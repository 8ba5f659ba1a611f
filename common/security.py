"""
Corisio - Security Utilities
=============================
JWT tokens for API auth, plus the signing primitives payment providers use:
canonical JSON, HMAC-SHA256/512, SHA-512 and constant-time comparison.
"""

import hmac
import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Optional

from jose import jwt, JWTError

from config.settings import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from common.helpers import now_utc

logger = logging.getLogger("corisio.security")


# ==========================================
# JWT Tokens
# ==========================================

def create_token(data: dict) -> str:
    """Create JWT token for a user (sub = user id)."""
    to_encode = data.copy()
    to_encode["exp"] = now_utc() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns payload or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected token: {e}")
        return None


# ==========================================
# Payload canonicalization
# ==========================================

def sort_object_keys(value: Any) -> Any:
    """
    Recursively sort the keys of nested dicts.
    Dicts inside lists are left in their given order; providers compute
    their signatures the same way.
    """
    if isinstance(value, dict):
        return {k: sort_object_keys(value[k]) for k in sorted(value)}
    return value


def canonical_json(payload: Any) -> str:
    """Compact JSON with sorted keys, the exact bytes that get signed."""
    return json.dumps(sort_object_keys(payload), separators=(",", ":"), ensure_ascii=False)


# ==========================================
# Digests
# ==========================================

def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def hmac_sha512_hex(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha512).hexdigest()


def sha512_hex(message: str) -> str:
    return hashlib.sha512(message.encode("utf-8")).hexdigest()


def signatures_match(expected: str, received: Optional[str]) -> bool:
    """Constant-time comparison; a missing signature never matches."""
    if not received or not expected:
        return False
    return hmac.compare_digest(expected.strip().lower(), received.strip().lower())
