"""
OPay Gateway
=============
Cashier API. Amounts in kobo (naira x 100).
Signature: SHA-512 hex of canonical JSON + timestamp + private key, sent as
Authorization-Signature with Authorization-Timestamp and MerchantId.
Business success is code "00000".
"""

import json
import time
import httpx
import logging
from typing import Any, Dict, Optional

from config.settings import OPAY_CONFIG, OPayConfig
from common.helpers import unix_millis
from common.security import canonical_json, sha512_hex, signatures_match
from modules.payment.gateways import (
    BaseGateway, GatewayResponse, PaymentData, ProviderUnavailable, VerifiedPayment,
    from_minor_units, map_status, register_gateway, to_minor_units,
)

logger = logging.getLogger("corisio.gateway.opay")

OK_CODE = "00000"
SESSION_TTL_SECONDS = 3600
SUCCESS_STATES = {"success", "successful"}
FAILED_STATES = {"fail", "failed", "close", "closed", "cancelled"}


class OPayGateway(BaseGateway):
    name = "opay"
    label = "OPay"
    description = "Pay with OPay Wallet, Cards, Bank Transfer"
    logo = "/images/opay-logo.png"
    signature_header = "authorization-signature"
    timestamp_header = "authorization-timestamp"

    def __init__(self, config: OPayConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(timeout=config.timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.config.private_key)

    def sign(self, payload: Dict[str, Any], timestamp: str) -> str:
        return sha512_hex(f"{canonical_json(payload)}{timestamp}{self.config.private_key}")

    def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        timestamp = str(unix_millis())
        return self.client.post(
            f"{self.config.base_url}{path}",
            content=canonical_json(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.config.public_key}",
                "MerchantId": self.config.merchant_id,
                "Authorization-Signature": self.sign(payload, timestamp),
                "Authorization-Timestamp": timestamp,
            },
        )

    def initialize(self, data: PaymentData) -> GatewayResponse:
        client_ip = data.user_ip or "127.0.0.1"
        payload = {
            "reference": data.reference,
            "mchShortName": self.config.merchant_id,
            "productName": data.description,
            "productDesc": data.description,
            "userPhone": data.phone,
            "userRequestIp": client_ip,
            "amount": to_minor_units(data.amount),
            "currency": data.currency,
            "osType": "WEB",
            "callbackUrl": data.callback_url,
            "returnUrl": data.return_url or data.callback_url,
            "expireAt": int(time.time()) + SESSION_TTL_SECONDS,
            "userClientIP": client_ip,
        }
        resp = self._post("/api/v3/cashier/initialize", payload)
        logger.info(f"OPay initialize [{data.reference}]: HTTP {resp.status_code}")

        if resp.status_code >= 400:
            return self._fail(self._error_message(resp, "Payment initialization failed"))
        try:
            body = resp.json()
        except ValueError:
            return self._fail("Malformed response from OPay")

        if body.get("code") != OK_CODE or not isinstance(body.get("data"), dict):
            return self._fail(body.get("message") or "Payment initialization failed")

        result = body["data"]
        return GatewayResponse(success=True, provider=self.name, data={
            **result,
            "authorization_url": result.get("cashierUrl"),
            "paymentUrl": result.get("cashierUrl"),
            "reference": result.get("reference", data.reference),
        })

    def verify(self, reference: str) -> GatewayResponse:
        resp = self._post("/api/v3/cashier/status", {"reference": reference, "orderNo": reference})
        logger.info(f"OPay verify [{reference}]: HTTP {resp.status_code}")

        if resp.status_code >= 500:
            raise ProviderUnavailable(f"OPay returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            return self._fail(self._error_message(resp, "Payment verification failed"))
        try:
            body = resp.json()
        except ValueError:
            return self._fail("Malformed response from OPay")

        if body.get("code") != OK_CODE or not isinstance(body.get("data"), dict):
            return self._fail(body.get("message") or "Payment verification failed")

        result = body["data"]
        amount = result.get("amount")
        if isinstance(amount, dict):
            amount = amount.get("total")
        return GatewayResponse(success=True, provider=self.name, data=VerifiedPayment(
            provider=self.name,
            reference=result.get("reference", reference),
            status=map_status(result.get("status"), SUCCESS_STATES, FAILED_STATES),
            amount=from_minor_units(amount) if amount is not None else None,
            transaction_id=str(result["orderNo"]) if result.get("orderNo") else None,
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
        data = event.get("payload") if isinstance(event.get("payload"), dict) else event
        return data.get("reference")


register_gateway(OPayGateway(OPAY_CONFIG))
