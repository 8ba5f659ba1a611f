"""
Paystack Gateway
=================
REST/JSON, bearer secret key. Amounts in kobo (naira x 100).
Webhooks: HMAC-SHA512 of the raw body with the secret key, sent in
the x-paystack-signature header.
"""

import httpx
import logging
from typing import Any, Dict, Optional

from config.settings import PAYSTACK_CONFIG, PaystackConfig
from common.security import hmac_sha512_hex, signatures_match
from modules.payment.gateways import (
    BaseGateway, GatewayResponse, PaymentData, ProviderUnavailable, VerifiedPayment,
    from_minor_units, map_status, register_gateway, to_minor_units,
)

logger = logging.getLogger("corisio.gateway.paystack")

SUCCESS_STATES = {"success"}
FAILED_STATES = {"failed", "abandoned", "reversed"}


class PaystackGateway(BaseGateway):
    name = "paystack"
    label = "Paystack"
    description = "Pay with Cards, Bank Transfer, USSD"
    logo = "/images/paystack-logo.png"
    signature_header = "x-paystack-signature"

    def __init__(self, config: PaystackConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(timeout=config.timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.config.secret_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize(self, data: PaymentData) -> GatewayResponse:
        payload = {
            "email": data.email,
            "amount": to_minor_units(data.amount),
            "reference": data.reference,
            "currency": data.currency,
            "callback_url": data.callback_url,
            "metadata": {
                "type": "purchase",
                "orderId": data.order_id,
                "userId": data.user_id,
                "orderIds": data.order_ids,
                **data.metadata,
            },
        }
        resp = self.client.post(f"{self.config.base_url}/transaction/initialize",
                                json=payload, headers=self._headers())
        logger.info(f"Paystack initialize [{data.reference}]: HTTP {resp.status_code}")

        if resp.status_code >= 400:
            return self._fail(self._error_message(resp, "Payment initialization failed"))
        try:
            body = resp.json()
        except ValueError:
            return self._fail("Malformed response from Paystack")

        if not body.get("status") or not isinstance(body.get("data"), dict):
            return self._fail(body.get("message") or "Payment initialization failed")

        result = body["data"]
        return GatewayResponse(success=True, provider=self.name, data={
            "authorization_url": result.get("authorization_url"),
            "paymentUrl": result.get("authorization_url"),
            "access_code": result.get("access_code"),
            "reference": result.get("reference", data.reference),
        })

    def verify(self, reference: str) -> GatewayResponse:
        resp = self.client.get(f"{self.config.base_url}/transaction/verify/{reference}",
                               headers=self._headers())
        logger.info(f"Paystack verify [{reference}]: HTTP {resp.status_code}")

        if resp.status_code >= 500:
            raise ProviderUnavailable(f"Paystack returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            return self._fail(self._error_message(resp, "Payment verification failed"))
        try:
            body = resp.json()
        except ValueError:
            return self._fail("Malformed response from Paystack")

        result = body.get("data")
        if not body.get("status") or not isinstance(result, dict):
            return self._fail(body.get("message") or "Payment verification failed")

        return GatewayResponse(success=True, provider=self.name, data=VerifiedPayment(
            provider=self.name,
            reference=result.get("reference", reference),
            status=map_status(result.get("status"), SUCCESS_STATES, FAILED_STATES),
            amount=from_minor_units(result["amount"]) if result.get("amount") is not None else None,
            transaction_id=str(result["id"]) if result.get("id") is not None else None,
            raw=result,
        ))

    def sign_webhook(self, raw_body: bytes) -> str:
        return hmac_sha512_hex(self.config.secret_key, raw_body)

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str],
                                 timestamp: Optional[str] = None) -> bool:
        return signatures_match(self.sign_webhook(raw_body), signature)

    def extract_webhook_reference(self, event: Dict[str, Any]) -> Optional[str]:
        if event.get("event") not in ("charge.success", "charge.failed"):
            return None
        return (event.get("data") or {}).get("reference")


register_gateway(PaystackGateway(PAYSTACK_CONFIG))
