"""
Payment gateway facade and the Paystack, PalmPay and OPay adapters.
Provider HTTP is served by httpx.MockTransport; no network access.
"""

import json
import re
from decimal import Decimal

import httpx
import pytest

from config.settings import PaystackConfig, PalmPayConfig, OPayConfig, PAYMENT_INIT_ATTEMPTS, PAYMENT_VERIFY_ATTEMPTS
from common.security import canonical_json, hmac_sha256_hex, sha512_hex
from modules.payment.gateways import (
    PaymentGateway, PaymentData, VerifyStatus, CASH_ON_DELIVERY,
    to_minor_units, from_minor_units, json_number, map_status,
)
from modules.payment.gateways.paystack import PaystackGateway
from modules.payment.gateways.palmpay import PalmPayGateway
from modules.payment.gateways.opay import OPayGateway

PAYSTACK = PaystackConfig(secret_key="sk_test_abc", base_url="https://paystack.test", timeout=5)
PALMPAY = PalmPayConfig(merchant_id="PP-MERCHANT", secret_key="palm_secret", base_url="https://palmpay.test", timeout=5)
OPAY = OPayConfig(merchant_id="256620000000001", public_key="OPAYPUB123", private_key="OPAYPRV456",
                  base_url="https://opay.test", timeout=5)


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _payment(**overrides):
    fields = dict(
        email="ada@example.com",
        amount=Decimal("2538.00"),
        reference="PAY_7_1700000000000",
        order_id="7",
        user_id="3",
        order_ids=["7"],
        description="Order ORD-260101-100001",
        phone="08030000001",
        callback_url="http://testserver/api/payment/callback?provider=x",
        user_ip="41.58.0.10",
    )
    fields.update(overrides)
    return PaymentData(**fields)


# ============================================================================
# Units, statuses, fees
# ============================================================================

class TestAmountsAndFees:

    def test_minor_units(self):
        assert to_minor_units(Decimal("2538.00")) == 253800
        assert to_minor_units("1234.565") == 123457
        assert from_minor_units(253800) == Decimal("2538.00")
        assert from_minor_units("99") == Decimal("0.99")

    def test_json_number(self):
        assert json_number(Decimal("2538.00")) == 2538
        assert isinstance(json_number(Decimal("2538.00")), int)
        assert json_number(Decimal("10.50")) == 10.5

    def test_map_status(self):
        assert map_status("Success", {"success"}, {"failed"}) == VerifyStatus.SUCCESS
        assert map_status("failed", {"success"}, {"failed"}) == VerifyStatus.FAILED
        assert map_status("ongoing", {"success"}, {"failed"}) == VerifyStatus.PENDING
        assert map_status(None, {"success"}, {"failed"}) == VerifyStatus.PENDING

    def test_opay_fee_on_ten_thousand(self):
        assert PaymentGateway({}).compute_fee("opay", 10000) == 250

    def test_fee_schedule(self):
        gateway = PaymentGateway({})
        assert gateway.compute_fee("paystack", 10000) == 150
        assert gateway.compute_fee("PalmPay", 10000) == 140
        assert gateway.compute_fee(CASH_ON_DELIVERY, 10000) == 0
        assert gateway.compute_fee("bitcoin", 10000) == 0
        assert gateway.compute_fee("paystack", 100_000_000) == 200000

    def test_reference_format(self):
        assert re.match(r"^PAY_42_\d{13}$", PaymentGateway.generate_reference(42))


class TestFacade:

    def test_unsupported_provider(self):
        gateway = PaymentGateway({})
        assert not gateway.is_supported("bitcoin")

        result = gateway.initialize("bitcoin", _payment())
        assert result.success is False
        assert result.error == "Unsupported payment provider"

        result = gateway.verify("bitcoin", "PAY_1_1")
        assert result.success is False
        assert result.error == "Unsupported payment provider"
        assert gateway.verify_webhook_signature("bitcoin", b"{}", "sig") is False

    def test_provider_lookup_is_case_insensitive(self):
        gateway = PaymentGateway({"paystack": PaystackGateway(PAYSTACK, client=_client(lambda r: None))})
        assert gateway.is_supported("Paystack")

    def test_supported_methods_end_with_cash_on_delivery(self):
        gateway = PaymentGateway({
            "paystack": PaystackGateway(PAYSTACK, client=_client(lambda r: None)),
            "opay": OPayGateway(OPAY, client=_client(lambda r: None)),
        })
        methods = gateway.get_supported_payment_methods()
        assert [m["id"] for m in methods] == ["paystack", "opay", CASH_ON_DELIVERY]
        assert all(m["enabled"] for m in methods)

    def test_registry_has_all_providers(self):
        gateway = PaymentGateway()
        for name in ("paystack", "palmpay", "opay"):
            assert gateway.is_supported(name)


# ============================================================================
# Paystack
# ============================================================================

class TestPaystack:

    def test_initialize_sends_kobo_with_bearer(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": True, "data": {
                "authorization_url": "https://checkout.paystack.com/abc",
                "access_code": "abc",
                "reference": "PAY_7_1700000000000",
            }})

        gw = PaystackGateway(PAYSTACK, client=_client(handler))
        result = gw.initialize(_payment())

        assert result.success
        assert result.data["authorization_url"] == "https://checkout.paystack.com/abc"
        assert result.data["paymentUrl"] == "https://checkout.paystack.com/abc"
        assert seen["auth"] == "Bearer sk_test_abc"
        assert seen["body"]["amount"] == 253800
        assert seen["body"]["reference"] == "PAY_7_1700000000000"
        assert seen["body"]["metadata"]["orderIds"] == ["7"]

    def test_initialize_error_message(self):
        gw = PaystackGateway(PAYSTACK, client=_client(
            lambda r: httpx.Response(400, json={"status": False, "message": "Invalid key"})))
        result = gw.initialize(_payment())
        assert result.success is False
        assert result.error == "Invalid key"

    def test_verify_success_in_major_units(self):
        def handler(request):
            assert request.url.path == "/transaction/verify/PAY_7_1700000000000"
            return httpx.Response(200, json={"status": True, "data": {
                "id": 4099260516, "reference": "PAY_7_1700000000000",
                "status": "success", "amount": 253800,
            }})

        result = PaystackGateway(PAYSTACK, client=_client(handler)).verify("PAY_7_1700000000000")
        verified = result.data
        assert verified.succeeded
        assert verified.amount == Decimal("2538.00")
        assert verified.transaction_id == "4099260516"

    @pytest.mark.parametrize("raw, expected", [
        ("abandoned", VerifyStatus.FAILED),
        ("failed", VerifyStatus.FAILED),
        ("ongoing", VerifyStatus.PENDING),
    ])
    def test_verify_status_mapping(self, raw, expected):
        gw = PaystackGateway(PAYSTACK, client=_client(lambda r: httpx.Response(200, json={
            "status": True, "data": {"reference": "PAY_1_1", "status": raw, "amount": 100}})))
        assert gw.verify("PAY_1_1").data.status == expected

    def test_verify_server_error_is_retried_then_retryable(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        gateway = PaymentGateway({"paystack": PaystackGateway(PAYSTACK, client=_client(handler))})
        result = gateway.verify("paystack", "PAY_1_1")

        assert result.success is False
        assert result.retryable is True
        assert len(calls) == PAYMENT_VERIFY_ATTEMPTS

    def test_initialize_connect_error_retried_with_same_reference(self):
        references = []

        def handler(request):
            references.append(json.loads(request.content)["reference"])
            raise httpx.ConnectError("connection refused", request=request)

        gateway = PaymentGateway({"paystack": PaystackGateway(PAYSTACK, client=_client(handler))})
        result = gateway.initialize("paystack", _payment())

        assert result.success is False
        assert result.retryable is True
        assert references == ["PAY_7_1700000000000"] * PAYMENT_INIT_ATTEMPTS

    def test_initialize_read_timeout_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        gateway = PaymentGateway({"paystack": PaystackGateway(PAYSTACK, client=_client(handler))})
        result = gateway.initialize("paystack", _payment())

        assert result.retryable is True
        assert result.error == "Payment provider did not respond. Please try again."
        assert len(calls) == 1

    def test_webhook_signature(self):
        gw = PaystackGateway(PAYSTACK, client=_client(lambda r: None))
        body = json.dumps({"event": "charge.success", "data": {"reference": "PAY_1_1"}}).encode()
        signature = gw.sign_webhook(body)

        assert len(signature) == 128
        assert gw.verify_webhook_signature(body, signature)
        assert gw.verify_webhook_signature(body, signature.upper())
        assert not gw.verify_webhook_signature(body + b" ", signature)
        assert not gw.verify_webhook_signature(body, None)
        assert not gw.verify_webhook_signature(body, "0" * 128)

    def test_webhook_reference(self):
        gw = PaystackGateway(PAYSTACK, client=_client(lambda r: None))
        assert gw.extract_webhook_reference({"event": "charge.success", "data": {"reference": "PAY_1_1"}}) == "PAY_1_1"
        assert gw.extract_webhook_reference({"event": "charge.failed", "data": {"reference": "PAY_1_2"}}) == "PAY_1_2"
        assert gw.extract_webhook_reference({"event": "transfer.success", "data": {"reference": "T1"}}) is None


# ============================================================================
# PalmPay
# ============================================================================

class TestPalmPay:

    def test_signature_is_hmac_over_timestamp_and_canonical_body(self):
        gw = PalmPayGateway(PALMPAY, client=_client(lambda r: None))
        payload = {"reference": "PAY_1_1", "amount": 2538, "merchantId": "PP-MERCHANT"}
        expected = hmac_sha256_hex("palm_secret", "1700000000000" + canonical_json(payload))
        assert gw.sign(payload, "1700000000000") == expected

    def test_initialize_signs_request(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["timestamp"] = request.headers["X-Timestamp"]
            seen["signature"] = request.headers["X-Signature"]
            seen["merchant"] = request.headers["X-Merchant-Id"]
            return httpx.Response(200, json={"data": {"checkoutUrl": "https://pay.palmpay.test/c/1",
                                                      "orderNo": "PP1"}})

        gw = PalmPayGateway(PALMPAY, client=_client(handler))
        result = gw.initialize(_payment())

        assert result.success
        assert result.data["authorization_url"] == "https://pay.palmpay.test/c/1"
        assert result.data["reference"] == "PAY_7_1700000000000"
        assert seen["body"]["amount"] == 2538
        assert seen["merchant"] == "PP-MERCHANT"
        assert seen["signature"] == gw.sign(seen["body"], seen["timestamp"])

    def test_verify(self):
        gw = PalmPayGateway(PALMPAY, client=_client(lambda r: httpx.Response(200, json={"data": {
            "reference": "PAY_7_1700000000000", "status": "SUCCESSFUL", "amount": 2538, "transactionId": "TX9",
        }})))
        verified = gw.verify("PAY_7_1700000000000").data
        assert verified.status == VerifyStatus.SUCCESS
        assert verified.amount == Decimal("2538.00")
        assert verified.transaction_id == "TX9"

    def test_webhook_signature_ignores_key_order(self):
        gw = PalmPayGateway(PALMPAY, client=_client(lambda r: None))
        payload = {"status": "success", "reference": "PAY_1_1", "amount": 100}
        signature = gw.sign(payload, "1700000000000")
        body = json.dumps(payload).encode()

        assert gw.verify_webhook_signature(body, signature, "1700000000000")
        assert not gw.verify_webhook_signature(body, signature, "1700000000001")
        assert not gw.verify_webhook_signature(body, signature, None)
        assert not gw.verify_webhook_signature(b"not json", signature, "1700000000000")

    def test_webhook_reference(self):
        gw = PalmPayGateway(PALMPAY, client=_client(lambda r: None))
        assert gw.extract_webhook_reference({"data": {"reference": "PAY_1_1"}}) == "PAY_1_1"
        assert gw.extract_webhook_reference({"orderId": "PAY_1_2"}) == "PAY_1_2"


# ============================================================================
# OPay
# ============================================================================

class TestOPay:

    def test_signature_is_sha512_of_body_timestamp_key(self):
        gw = OPayGateway(OPAY, client=_client(lambda r: None))
        payload = {"reference": "PAY_1_1", "amount": 1000}
        expected = sha512_hex(canonical_json(payload) + "1700000000000" + "OPAYPRV456")
        assert gw.sign(payload, "1700000000000") == expected

    def test_initialize(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(200, json={"code": "00000", "message": "SUCCESSFUL", "data": {
                "reference": "PAY_7_1700000000000", "orderNo": "OP1",
                "cashierUrl": "https://cashier.opay.test/OP1",
            }})

        gw = OPayGateway(OPAY, client=_client(handler))
        result = gw.initialize(_payment())

        assert result.success
        assert result.data["authorization_url"] == "https://cashier.opay.test/OP1"
        assert seen["body"]["amount"] == 253800
        assert seen["body"]["userClientIP"] == "41.58.0.10"
        assert seen["headers"]["Authorization"] == "Bearer OPAYPUB123"
        assert seen["headers"]["MerchantId"] == "256620000000001"
        assert seen["headers"]["Authorization-Signature"] == gw.sign(
            seen["body"], seen["headers"]["Authorization-Timestamp"])

    def test_initialize_business_error(self):
        gw = OPayGateway(OPAY, client=_client(lambda r: httpx.Response(200, json={
            "code": "02002", "message": "merchant not configured"})))
        result = gw.initialize(_payment())
        assert result.success is False
        assert result.error == "merchant not configured"

    def test_verify_amount_object_in_kobo(self):
        gw = OPayGateway(OPAY, client=_client(lambda r: httpx.Response(200, json={"code": "00000", "data": {
            "reference": "PAY_7_1700000000000", "orderNo": "OP1", "status": "SUCCESS",
            "amount": {"total": 253800, "currency": "NGN"},
        }})))
        verified = gw.verify("PAY_7_1700000000000").data
        assert verified.succeeded
        assert verified.amount == Decimal("2538.00")
        assert verified.transaction_id == "OP1"

    def test_verify_closed_is_failure(self):
        gw = OPayGateway(OPAY, client=_client(lambda r: httpx.Response(200, json={"code": "00000", "data": {
            "reference": "PAY_1_1", "status": "CLOSE", "amount": {"total": 100}}})))
        assert gw.verify("PAY_1_1").data.status == VerifyStatus.FAILED

    def test_webhook_signature(self):
        gw = OPayGateway(OPAY, client=_client(lambda r: None))
        payload = {"payload": {"reference": "PAY_1_1", "status": "SUCCESS"}, "type": "transaction-status"}
        signature = gw.sign(payload, "1700000000000")
        body = json.dumps(payload).encode()

        assert gw.verify_webhook_signature(body, signature, "1700000000000")
        assert not gw.verify_webhook_signature(body, sha512_hex("forged"), "1700000000000")
        assert gw.extract_webhook_reference(payload) == "PAY_1_1"
