"""
Corisio - Custom Exceptions
============================
Business-level exceptions that can be caught and converted to HTTP responses.
Each carries the HTTP status it maps to; main.py renders them as
{"success": false, "error": message}.
"""

from fastapi import HTTPException, status


class CorisioError(Exception):
    """Base exception for all business logic errors."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(CorisioError):
    """Raised when caller input breaks a business rule."""
    pass


class AuthenticationError(CorisioError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(CorisioError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(CorisioError):
    """Raised when a requested resource doesn't exist."""
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(CorisioError):
    """Raised when a concurrent write lost (stale version, lost CAS)."""
    status_code = status.HTTP_409_CONFLICT


class InsufficientInventoryError(ConflictError):
    """Raised when product inventory is not enough."""
    def __init__(self, product_name: str = ""):
        msg = f"Insufficient stock for {product_name}" if product_name else "Insufficient stock"
        self.product_name = product_name
        super().__init__(msg)


class InvalidTransitionError(ValidationError):
    """Raised when an order status change is not allowed."""
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from {current} to {target}")


class PaymentError(CorisioError):
    """Raised for payment gateway errors."""
    status_code = status.HTTP_502_BAD_GATEWAY


class SignatureError(CorisioError):
    """Raised when a webhook signature does not match."""
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class ReconciliationAnomaly(CorisioError):
    """Raised when provider data contradicts the ledger (unknown ref, amount mismatch)."""
    status_code = status.HTTP_409_CONFLICT


def raise_http(error: CorisioError, status_code: int = None):
    """Convert a business exception to an HTTP exception."""
    raise HTTPException(status_code=status_code or error.status_code, detail=error.message)
