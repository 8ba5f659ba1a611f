"""
Payment Gateway Abstraction
=============================
Each adapter implements initialize(), verify() and webhook signature checks.
Registry pattern for adapter lookup by name; PaymentGateway is the facade
the rest of the app talks to.

Facade rules:
  - Unknown provider -> GatewayResponse(success=False, error="Unsupported payment provider")
  - verify() is retried on any transport error (it is read-only at the provider)
  - initialize() is retried only when the connection was never made, and
    always with the same reference, so the provider never sees two sessions
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config.settings import PAYMENT_FEES, PAYMENT_VERIFY_ATTEMPTS, PAYMENT_INIT_ATTEMPTS
from common.helpers import to_money, unix_millis
from modules.pricing.calculator import compute_provider_fee

logger = logging.getLogger("corisio.gateway")

CASH_ON_DELIVERY = "cash_on_delivery"
UNSUPPORTED_PROVIDER = "Unsupported payment provider"


class ProviderUnavailable(Exception):
    """Provider answered with a server error; the call may be repeated."""
    pass


class VerifyStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class PaymentData:
    """Input for initializing a payment. Amount is in major units (naira)."""
    email: str
    amount: Decimal
    reference: str
    order_id: str
    user_id: str
    order_ids: List[str] = field(default_factory=list)
    description: str = "Order Payment"
    phone: str = ""
    currency: str = "NGN"
    callback_url: Optional[str] = None
    return_url: Optional[str] = None
    user_ip: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VerifiedPayment:
    """Provider-agnostic result of verify(); amount in major units."""
    provider: str
    reference: str
    status: VerifyStatus
    amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == VerifyStatus.SUCCESS


@dataclass
class GatewayResponse:
    success: bool
    provider: str
    data: Any = None
    error: Optional[str] = None
    retryable: bool = False      # transport failure; safe to call again later

    def to_dict(self) -> dict:
        payload = {"success": self.success, "provider": self.provider}
        if self.success:
            payload["data"] = self.data.__dict__ if isinstance(self.data, VerifiedPayment) else self.data
        else:
            payload["error"] = self.error
        return payload


# ── Amount units ──

def to_minor_units(amount) -> int:
    """Naira -> kobo, rounded half-up."""
    return int((to_money(amount) * 100).quantize(Decimal("1")))


def from_minor_units(amount) -> Decimal:
    return to_money(Decimal(str(amount)) / Decimal(100))


def json_number(amount):
    """A major-unit amount as a plain JSON number (int when whole)."""
    value = to_money(amount)
    return int(value) if value == value.to_integral_value() else float(value)


def map_status(raw, success_values, failed_values) -> VerifyStatus:
    value = str(raw or "").strip().lower()
    if value in success_values:
        return VerifyStatus.SUCCESS
    if value in failed_values:
        return VerifyStatus.FAILED
    return VerifyStatus.PENDING


class BaseGateway:
    """Abstract adapter interface."""
    name: str = ""
    label: str = ""
    description: str = ""
    logo: str = ""
    signature_header: str = ""
    timestamp_header: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return False

    def initialize(self, data: PaymentData) -> GatewayResponse:
        raise NotImplementedError

    def verify(self, reference: str) -> GatewayResponse:
        raise NotImplementedError

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str],
                                 timestamp: Optional[str] = None) -> bool:
        raise NotImplementedError

    def extract_webhook_reference(self, event: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def _fail(self, error: str, retryable: bool = False) -> GatewayResponse:
        return GatewayResponse(success=False, provider=self.name, error=error, retryable=retryable)

    @staticmethod
    def _error_message(resp: httpx.Response, default: str) -> str:
        try:
            body = resp.json()
        except ValueError:
            return f"{default} (HTTP {resp.status_code})"
        if isinstance(body, dict):
            return body.get("message") or body.get("msg") or default
        return default


# ── Registry ──

_GATEWAYS: Dict[str, BaseGateway] = {}


def register_gateway(gw: BaseGateway):
    _GATEWAYS[gw.name] = gw


def get_gateway(name: str) -> Optional[BaseGateway]:
    return _GATEWAYS.get((name or "").lower())


def get_all_gateway_names() -> List[str]:
    return list(_GATEWAYS.keys())


# ── Retry policies ──

def verify_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(PAYMENT_VERIFY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type((httpx.TransportError, ProviderUnavailable)),
    )


def initialize_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(PAYMENT_INIT_ATTEMPTS),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    )


# ── Facade ──

class PaymentGateway:

    def __init__(self, adapters: Optional[Dict[str, BaseGateway]] = None):
        # None -> the module registry, filled by the adapter modules on import
        self._adapters = adapters

    def get_adapter(self, provider: str) -> Optional[BaseGateway]:
        if self._adapters is None:
            return get_gateway(provider)
        return self._adapters.get((provider or "").lower())

    def is_supported(self, provider: str) -> bool:
        return self.get_adapter(provider) is not None

    def initialize(self, provider: str, data: PaymentData) -> GatewayResponse:
        gw = self.get_adapter(provider)
        if not gw:
            return GatewayResponse(success=False, provider=provider, error=UNSUPPORTED_PROVIDER)
        try:
            result = initialize_retry()(gw.initialize)(data)
        except httpx.TimeoutException as e:
            logger.error(f"{gw.name} initialize timed out [{data.reference}]: {e}")
            return gw._fail("Payment provider did not respond. Please try again.", retryable=True)
        except httpx.TransportError as e:
            logger.error(f"{gw.name} initialize transport error [{data.reference}]: {e}")
            return gw._fail("Could not reach payment provider. Please try again.", retryable=True)
        if not result.success:
            logger.error(f"{gw.name} initialize failed [{data.reference}]: {result.error}")
        return result

    def verify(self, provider: str, reference: str) -> GatewayResponse:
        gw = self.get_adapter(provider)
        if not gw:
            return GatewayResponse(success=False, provider=provider, error=UNSUPPORTED_PROVIDER)
        try:
            return verify_retry()(gw.verify)(reference)
        except (httpx.TransportError, ProviderUnavailable) as e:
            logger.error(f"{gw.name} verify unavailable [{reference}]: {e}")
            return gw._fail("Payment provider unavailable, verification will be retried", retryable=True)

    def verify_webhook_signature(self, provider: str, raw_body: bytes, signature: Optional[str],
                                 timestamp: Optional[str] = None) -> bool:
        gw = self.get_adapter(provider)
        if not gw:
            return False
        return gw.verify_webhook_signature(raw_body, signature, timestamp)

    def compute_fee(self, provider: str, amount) -> int:
        schedule = PAYMENT_FEES.get((provider or "").lower())
        if not schedule:
            return 0
        return compute_provider_fee(amount, schedule["percentage"], schedule["cap"], schedule["fixed"])

    @staticmethod
    def generate_reference(order_id) -> str:
        return f"PAY_{order_id}_{unix_millis()}"

    def get_supported_payment_methods(self) -> List[dict]:
        methods = []
        for name in ("paystack", "palmpay", "opay"):
            gw = self.get_adapter(name)
            if gw:
                methods.append({
                    "id": gw.name,
                    "name": gw.label,
                    "description": gw.description,
                    "logo": gw.logo,
                    "enabled": gw.enabled,
                })
        methods.append({
            "id": CASH_ON_DELIVERY,
            "name": "Cash on Delivery",
            "description": "Pay when your order is delivered",
            "logo": "/images/cod-logo.png",
            "enabled": True,
        })
        return methods


payment_gateway = PaymentGateway()
