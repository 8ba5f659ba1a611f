"""
Payment Service
=================
Checkout payment initialization, provider verification and webhook intake
for Paystack, PalmPay, OPay and cash on delivery.

Every initialize() writes its ledger row first (order ids and slugs in
meta), then calls the provider. Callback and webhook both end in
verify_and_reconcile(): the provider is asked for the authoritative status
and the result goes through ReconciliationService. Routes commit; this
layer only flushes.
"""

import json
import logging
from decimal import Decimal
from typing import Dict, Any, List, Mapping, Optional

from sqlalchemy.orm import Session

from config.settings import BASE_URL
from common.exceptions import PaymentError, SignatureError, ValidationError
from common.helpers import to_money
from common.notifications import notify_order_event
from modules.order.models import Order
from modules.payment.ledger import payment_ledger, PaymentLedger
from modules.payment.models import LedgerStatus
from modules.payment.reconciliation import (
    reconciliation_service, ReconciliationService, ReconciliationResult,
)

# Import gateway modules to trigger register_gateway() calls
from modules.payment.gateways import (
    payment_gateway, PaymentGateway, PaymentData, CASH_ON_DELIVERY,
)
import modules.payment.gateways.paystack   # noqa: F401
import modules.payment.gateways.palmpay    # noqa: F401
import modules.payment.gateways.opay       # noqa: F401

logger = logging.getLogger("corisio.payment")
security_logger = logging.getLogger("corisio.security")


class PaymentService:

    def __init__(self, gateway: PaymentGateway, ledger: PaymentLedger, reconciler: ReconciliationService):
        self.gateway = gateway
        self.ledger = ledger
        self.reconciler = reconciler

    # ==========================================
    # 🔧 Providers
    # ==========================================

    def is_supported_method(self, method: str) -> bool:
        return method == CASH_ON_DELIVERY or self.gateway.is_supported(method)

    def get_payment_methods(self) -> List[dict]:
        return self.gateway.get_supported_payment_methods()

    def service_charge(self, provider: str, sub_total) -> Dict[str, Any]:
        sub_total = to_money(sub_total)
        if sub_total < 0:
            raise ValidationError("subTotal must not be negative")
        charge = self.gateway.compute_fee(provider, sub_total)
        return {
            "provider": provider,
            "subTotal": float(sub_total),
            "serviceCharge": charge,
            "total": float(sub_total + Decimal(charge)),
        }

    # ==========================================
    # 🏦 Initialize
    # ==========================================

    def initialize_order_payment(
        self, db: Session, orders: List[Order], user, provider: str,
        user_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Open one payment for a set of orders placed together.

        Returns {"success", "provider", "reference", "authorization_url", ...};
        on failure {"success": False, "error"} with the ledger entry failed
        and the orders flagged unpaid.
        """
        if not orders:
            raise ValidationError("No orders to pay for")
        provider = (provider or "").lower()
        if not self.is_supported_method(provider):
            raise ValidationError("Unsupported payment provider")

        amount = sum((to_money(o.total_amount) for o in orders), Decimal("0"))
        reference = self.gateway.generate_reference(orders[0].id)
        entry = self.ledger.log_purchase_pending(
            db,
            channel=provider,
            user_id=user.id,
            amount=amount,
            transaction_ref=reference,
            meta={
                "order_ids": [o.id for o in orders],
                "order_slugs": [o.order_slug for o in orders],
                "provider": provider,
            },
        )
        for order in orders:
            order.payment_reference = reference

        if provider == CASH_ON_DELIVERY:
            logger.info(f"COD payment logged {reference} for user {user.id}: {amount}")
            return {"success": True, "provider": provider, "reference": reference,
                    "amount": float(amount), "authorization_url": None, "paymentUrl": None}

        response = self.gateway.initialize(provider, PaymentData(
            email=user.email,
            amount=amount,
            reference=reference,
            order_id=str(orders[0].id),
            user_id=str(user.id),
            order_ids=[str(o.id) for o in orders],
            description=f"Order {orders[0].order_number}",
            phone=user.phone or "",
            callback_url=f"{BASE_URL}/api/payment/callback?provider={provider}",
            user_ip=user_ip,
            metadata={"orderSlugs": entry.order_slugs},
        ))

        if not response.success:
            self.ledger.initialization_failed(db, entry, response.error or "Payment initialization failed")
            return {"success": False, "provider": provider, "reference": reference,
                    "error": response.error, "retryable": response.retryable}

        entry.meta = {**entry.meta, "access_code": response.data.get("access_code")}
        db.flush()
        logger.info(f"Payment initialized {reference} via {provider} for user {user.id}: {amount}")
        return {"success": True, "provider": provider, "amount": float(amount), **response.data,
                "reference": reference}

    # ==========================================
    # ✅ Verify
    # ==========================================

    def verify_and_reconcile(self, db: Session, provider: str, reference: str) -> ReconciliationResult:
        """
        Ask the provider for the authoritative status, then reconcile.
        Raises PaymentError when the provider could not be reached so the
        caller can surface a retryable failure.
        """
        if not reference:
            raise ValidationError("Reference is required")
        if not self.gateway.is_supported(provider):
            raise ValidationError("Unsupported payment provider")

        response = self.gateway.verify(provider, reference)
        if not response.success:
            if response.retryable:
                raise PaymentError(response.error)
            logger.warning(f"Verify {reference} via {provider} rejected: {response.error}")
            return ReconciliationResult(success=False, message=response.error or "Payment verification failed")

        verified = response.data
        if verified.reference != reference:
            logger.error(f"Verify {reference}: provider answered for {verified.reference}")
            return ReconciliationResult(success=False, anomaly=True, message="Payment reference mismatch")
        return self.reconciler.reconcile(db, verified)

    def handle_webhook(
        self, db: Session, provider: str, raw_body: bytes, headers: Mapping[str, str],
    ) -> Optional[ReconciliationResult]:
        """
        Signature first, then verification with the provider. The webhook
        body itself is never trusted for status or amount. Returns None for
        events that carry no payment reference.
        """
        gw = self.gateway.get_adapter(provider)
        if not gw:
            raise ValidationError("Unsupported provider")

        signature = headers.get(gw.signature_header)
        timestamp = headers.get(gw.timestamp_header) if gw.timestamp_header else None
        if not self.gateway.verify_webhook_signature(provider, raw_body, signature, timestamp):
            security_logger.warning(f"Invalid {provider} webhook signature")
            raise SignatureError()

        try:
            event = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Malformed webhook body")
        if not isinstance(event, dict):
            raise ValidationError("Malformed webhook body")

        reference = gw.extract_webhook_reference(event)
        if not reference:
            logger.info(f"{provider} webhook ignored: no payment reference ({event.get('event')})")
            return None

        logger.info(f"{provider} webhook for {reference}")
        return self.verify_and_reconcile(db, provider, reference)

    # ==========================================
    # 🔔 After commit
    # ==========================================

    def send_notifications(self, result: Optional[ReconciliationResult]):
        if not result:
            return
        for user_id, event_type, slug in result.notifications:
            notify_order_event(user_id, event_type, slug)

    # ==========================================
    # 📜 History
    # ==========================================

    def get_history(self, db: Session, user_id: int, status: Optional[str] = None,
                    page: int = 1, limit: int = 20) -> Dict[str, Any]:
        if status and status not in {s.value for s in LedgerStatus}:
            raise ValidationError(f"Unknown payment status: {status}")
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        entries, total = self.ledger.get_user_history(db, user_id, status, page, limit)
        return {
            "payments": [e.to_dict() for e in entries],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }


payment_service = PaymentService(payment_gateway, payment_ledger, reconciliation_service)
