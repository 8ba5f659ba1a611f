"""
Payment Routes
================
Provider callback/webhook, manual verify, service-charge quote,
supported methods and the customer's payment history.

Endpoints:
  GET  /api/payment/callback            : Browser return from the provider (redirects)
  POST /api/payment/webhook/{provider}  : Signed server-to-server notification
  GET  /api/payment/service-charge      : Fee quote for a subtotal
  POST /api/payment/verify              : Manual verification by reference
  GET  /api/payment/methods             : Enabled payment methods
  GET  /api/payment/history             : Ledger entries of the current user
"""

import logging
import urllib.parse
from typing import Optional

from fastapi import APIRouter, Request, Depends, Query
from fastapi.responses import RedirectResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config.database import get_db
from config.settings import FRONTEND_URL, MOBILE_APP_URL, DEFAULT_PAYMENT_PROVIDER
from common.exceptions import CorisioError, PaymentError, ReconciliationAnomaly, SignatureError, ValidationError
from modules.auth.deps import require_login
from modules.payment.service import payment_service

router = APIRouter(prefix="/api/payment", tags=["payment"])
logger = logging.getLogger("corisio.payment")


# ==========================================
# Schemas
# ==========================================

class VerifyRequest(BaseModel):
    reference: Optional[str] = None
    provider: str = DEFAULT_PAYMENT_PROVIDER


def _redirect_base(platform: Optional[str]) -> str:
    return MOBILE_APP_URL if platform == "mobile" else FRONTEND_URL


def _join(base: str, path: str) -> str:
    return f"{base}{path}" if base.endswith("/") else f"{base}/{path}"


def _error_redirect(base: str, message: str) -> RedirectResponse:
    query = urllib.parse.urlencode({"payment": "error", "message": message}, quote_via=urllib.parse.quote)
    return RedirectResponse(f"{_join(base, 'cart')}?{query}", status_code=303)


# ==========================================
# 🔁 Callback (browser return)
# ==========================================

@router.get("/callback")
def payment_callback(
    reference: Optional[str] = None,
    provider: str = DEFAULT_PAYMENT_PROVIDER,
    platform: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Provider sends the customer back here; verify, reconcile and redirect to the app."""
    base = _redirect_base(platform)
    if not reference:
        return _error_redirect(base, "No payment reference provided")

    try:
        result = payment_service.verify_and_reconcile(db, provider, reference)
    except CorisioError as e:
        db.rollback()
        return _error_redirect(base, e.message)

    db.commit()
    payment_service.send_notifications(result)

    if not result.success:
        return _error_redirect(base, result.message or "Payment verification failed")

    query = urllib.parse.urlencode({
        "payment": "success",
        "message": "Payment verified successfully",
        "slugs": "-".join(result.order_slugs),
    }, quote_via=urllib.parse.quote)
    return RedirectResponse(f"{_join(base, 'checkout/completed')}?{query}", status_code=303)


# ==========================================
# 📨 Webhook
# ==========================================

@router.post("/webhook/{provider}")
async def payment_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Authenticated by the provider's signature over the raw body.
    200 once processed (or already processed); 5xx asks the provider to retry.
    """
    if not payment_service.gateway.is_supported(provider):
        return JSONResponse({"error": "Unsupported provider"}, status_code=400)

    raw_body = await request.body()
    try:
        result = await run_in_threadpool(
            payment_service.handle_webhook, db, provider, raw_body, request.headers,
        )
    except SignatureError:
        db.rollback()
        return JSONResponse({"error": "Invalid signature"}, status_code=401)
    except ValidationError as e:
        db.rollback()
        return JSONResponse({"error": e.message}, status_code=400)
    except PaymentError as e:
        db.rollback()
        logger.error(f"{provider} webhook deferred: {e.message}")
        return JSONResponse({"error": e.message}, status_code=502)

    db.commit()
    payment_service.send_notifications(result)
    if result and result.anomaly:
        logger.error(f"{provider} webhook accepted with anomaly: {result.message}")
    return {"status": "success"}


# ==========================================
# 💵 Service charge quote
# ==========================================

@router.get("/service-charge")
def service_charge(
    subTotal: Optional[float] = Query(None),
    provider: Optional[str] = Query(None),
):
    if subTotal is None or not provider:
        return JSONResponse({"error": "subTotal and provider are required"}, status_code=400)
    return payment_service.service_charge(provider, subTotal)


# ==========================================
# ✅ Manual verify
# ==========================================

@router.post("/verify")
def verify_payment(
    body: VerifyRequest,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    if not body.reference:
        return JSONResponse({"success": False, "error": "Reference is required"}, status_code=400)

    result = payment_service.verify_and_reconcile(db, body.provider, body.reference)
    db.commit()
    payment_service.send_notifications(result)

    if result.anomaly:
        raise ReconciliationAnomaly(result.message)
    if not result.success:
        return JSONResponse({"success": False, "error": result.message}, status_code=400)
    return {
        "success": True,
        "message": "Payment verified successfully",
        "data": {"reference": body.reference, "orderSlugs": result.order_slugs, "duplicate": result.duplicate},
    }


# ==========================================
# 📋 Methods / History
# ==========================================

@router.get("/methods")
def payment_methods():
    return {"success": True, "data": payment_service.get_payment_methods()}


@router.get("/history")
def payment_history(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    user=Depends(require_login),
):
    return {"success": True, "data": payment_service.get_history(db, user.id, status, page, limit)}
