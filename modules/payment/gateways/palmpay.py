"""
PalmPay Gateway
================
Signed REST/JSON. Amounts in naira (major units).
Signature: HMAC-SHA256 (key = secret) over timestamp + canonical JSON body,
sent as X-Signature with X-Timestamp and X-Merchant-Id. Webhooks are
signed the same way.
"""

import json
import httpx
import logging
from typing import Any, Dict, Optional

from config.settings import PALMPAY_CONFIG, PalmPayConfig
from common.helpers import unix_millis, to_money
from common.security import canonical_json, hmac_sha256_hex, signatures_match
from modules.payment.gateways import (
    BaseGateway, GatewayResponse, PaymentData, ProviderUnavailable, VerifiedPayment,
    json_number, map_status, register_gateway,
)

logger = logging.getLogger("corisio.gateway.palmpay")

SUCCESS_STATES = {"success", "successful", "completed", "paid"}
FAILED_STATES = {"failed", "fail", "cancelled", "closed", "expired"}


class PalmPayGateway(BaseGateway):
    name = "palmpay"
    label = "PalmPay"
    description = "Pay with PalmPay Wallet"
    logo = "/images/palmpay-logo.png"
    signature_header = "x-signature"
    timestamp_header = "x-timestamp"

    def __init__(self, config: PalmPayConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(timeout=config.timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.config.secret_key)

    def sign(self, payload: Dict[str, Any], timestamp: str) -> str:
        return hmac_sha256_hex(self.config.secret_key, f"{timestamp}{canonical_json(payload)}")

    def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        timestamp = str(unix_millis())
        return self.client.post(
            f"{self.config.base_url}{path}",
            content=canonical_json(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "X-Timestamp": timestamp,
                "X-Signature": self.sign(payload, timestamp),
                "X-Merchant-Id": self.config.merchant_id,
            },
        )

    def initialize(self, data: PaymentData) -> GatewayResponse:
        payload = {
            "merchantId": self.config.merchant_id,
            "amount": json_number(data.amount),
            "currency": data.currency,
            "reference": data.reference,
            "description": data.description,
            "customerEmail": data.email,
            "customerPhone": data.phone,
            "callbackUrl": data.callback_url,
            "metadata": {
                "orderId": data.order_id,
                "userId": data.user_id,
                "orderIds": data.order_ids,
                **data.metadata,
            },
        }
        resp = self._post("/v1/payments/initialize", payload)
        logger.info(f"PalmPay initialize [{data.reference}]: HTTP {resp.status_code}")

        if resp.status_code >= 400:
            return self._fail(self._error_message(resp, "Payment initialization failed"))
        try:
            body = resp.json()
        except ValueError:
            return self._fail("Malformed response from PalmPay")

        result = body.get("data") if isinstance(body.get("data"), dict) else body
        checkout_url = result.get("checkoutUrl") or result.get("paymentUrl")
        return GatewayResponse(success=True, provider=self.name, data={
            **result,
            "authorization_url": checkout_url,
            "paymentUrl": checkout_url,
            "reference": result.get("reference", data.reference),
        })

    def verify(self, reference: str) -> GatewayResponse:
        resp = self._post("/v1/payments/verify", {
            "merchantId": self.config.merchant_id,
            "reference": reference,
        })
        logger.info(f"PalmPay verify [{reference}]: HTTP {resp.status_code}")

        if resp.status_code >= 500:
            raise ProviderUnavailable(f"PalmPay returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            return self._fail(self._error_message(resp, "Payment verification failed"))
        try:
            body = resp.json()
        except ValueError:
            return self._fail("Malformed response from PalmPay")

        result = body.get("data") if isinstance(body.get("data"), dict) else body
        amount = result.get("amount")
        transaction_id = result.get("transactionId") or result.get("orderNo")
        return GatewayResponse(success=True, provider=self.name, data=VerifiedPayment(
            provider=self.name,
            reference=result.get("reference", reference),
            status=map_status(result.get("status"), SUCCESS_STATES, FAILED_STATES),
            amount=to_money(amount) if amount is not None else None,
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            raw=result,
        ))

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str],
                                 timestamp: Optional[str] = None) -> bool:
        if not timestamp:
            return False
        try:
            payload = json.loads(raw_body)
        except ValueError:
            return False
        return signatures_match(self.sign(payload, timestamp), signature)

    def extract_webhook_reference(self, event: Dict[str, Any]) -> Optional[str]:
        data = event.get("data") if isinstance(event.get("data"), dict) else event
        return data.get("reference") or data.get("orderId")


register_gateway(PalmPayGateway(PALMPAY_CONFIG))
