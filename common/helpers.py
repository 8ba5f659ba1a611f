"""
Corisio - Shared Helpers
=========================
Pure utility functions with NO database or module dependencies.
"""

import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

TWO_PLACES = Decimal("0.01")


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def to_money(value) -> Decimal:
    """Coerce a number to a 2-place Decimal (half-up). None counts as zero."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def unix_millis() -> int:
    return int(time.time() * 1000)


# ==========================================
# Order identifiers
# ==========================================

_SLUG_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(when: Optional[datetime] = None) -> str:
    """ORD-YYMMDD-NNNNNN (six random digits)."""
    when = when or now_utc()
    return f"ORD-{when.strftime('%y%m%d')}-{secrets.randbelow(900000) + 100000}"


def generate_order_slug(length: int = 8) -> str:
    """Short public handle for an order, A-Z0-9."""
    return "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(length))
