"""
Pytest configuration and fixtures for tests.

Settings are read from the environment at import time, so the test
environment is set up here before any application module is imported.
Every test gets a fresh in-memory SQLite schema.
"""

import json
import os
import sys
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-corisio"
os.environ["DEFAULT_PAYMENT_PROVIDER"] = "paystack"
os.environ["DELIVERY_FEE"] = "1500"
os.environ["TAX_PERCENT"] = "0"
os.environ["PAYMENT_VERIFY_ATTEMPTS"] = "2"
os.environ["PAYMENT_INIT_ATTEMPTS"] = "2"
os.environ["BASE_URL"] = "http://testserver"
os.environ["FRONTEND_URL"] = "http://localhost:3000"
os.environ["MOBILE_APP_URL"] = "corisio-app://"
os.environ["NOTIFICATION_URL"] = ""

from fastapi.testclient import TestClient  # noqa: E402

from config.database import Base, SessionLocal, engine  # noqa: E402
from config.settings import PaystackConfig  # noqa: E402
from common.helpers import now_utc  # noqa: E402
from common.security import create_token  # noqa: E402
from main import app  # noqa: E402
from modules.user.models import User  # noqa: E402
from modules.customer.models import Address  # noqa: E402
from modules.catalog.models import Product, ProductVariant, ProductStatus  # noqa: E402
from modules.coupon.models import Coupon  # noqa: E402
from modules.payment.gateways import PaymentGateway  # noqa: E402
from modules.payment.gateways.paystack import PaystackGateway  # noqa: E402
from modules.payment.service import payment_service  # noqa: E402


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def db():
    """Fresh schema per test; the session is closed afterwards."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db):
    """
    HTTP client against the app. Route handlers open their own sessions on
    the same in-memory database, so commit test data before calling it and
    expire the test session before reading results back.
    """
    return TestClient(app)


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_token({'sub': str(user.id)})}"}


# ============================================================================
# Users / addresses
# ============================================================================

@pytest.fixture
def customer(db):
    user = User(email="ada@example.com", phone="08030000001", full_name="Ada Obi", is_admin=False)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_customer(db):
    user = User(email="bayo@example.com", phone="08030000002", full_name="Bayo Ade", is_admin=False)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = User(email="admin@example.com", full_name="Store Admin", is_admin=True)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def address(db, customer):
    addr = Address(
        user_id=customer.id,
        label="Home",
        full_name="Ada Obi",
        address="12 Allen Avenue",
        phone="08030000001",
        state="Lagos",
        city="Ikeja",
        is_default=True,
    )
    db.add(addr)
    db.commit()
    return addr


# ============================================================================
# Catalog / coupons
# ============================================================================

@pytest.fixture
def make_product(db):
    def _make(name="Ankara Shirt", price=1000, stock=10, category="fashion",
              status=ProductStatus.ACTIVE, variants=None):
        product = Product(
            name=name,
            category=category,
            sales_price=Decimal(str(price)),
            stock_quantity=stock,
            status=status,
        )
        for variant_name, variant_price, variant_stock in variants or []:
            product.variants.append(ProductVariant(
                name=variant_name,
                sales_price=Decimal(str(variant_price)) if variant_price is not None else None,
                stock_quantity=variant_stock,
            ))
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", promo_type="percentage", value=10, **overrides):
        now = now_utc()
        fields = dict(
            coupon_code=code,
            promotion_name=f"{code} promo",
            promo_type=promo_type,
            discount_value=Decimal(str(value)),
            usage_limit=None,
            per_user_limit=1,
            current_usage=0,
            minimum_order_value=None,
            applicable_categories=[],
            applicable_products=[],
            start_date_time=now - timedelta(days=1),
            end_date_time=now + timedelta(days=30),
            is_active=True,
        )
        fields.update(overrides)
        coupon = Coupon(**fields)
        db.add(coupon)
        db.commit()
        return coupon
    return _make


# ============================================================================
# Paystack stand-in
# ============================================================================

PAYSTACK_TEST_CONFIG = PaystackConfig(
    secret_key="sk_test_corisio",
    base_url="https://paystack.test",
    timeout=5,
)


class FakePaystack:
    """
    In-memory Paystack answering the initialize and verify calls through
    httpx.MockTransport. Transactions start as "ongoing" and are moved
    with settle().
    """

    def __init__(self):
        self.transactions = {}
        self.requests = []
        self.initialize_error = None     # (http_status, message)
        self.verify_http_status = None   # force e.g. 500

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/transaction/initialize":
            if self.initialize_error:
                status, message = self.initialize_error
                return httpx.Response(status, json={"status": False, "message": message})
            payload = json.loads(request.content)
            ref = payload["reference"]
            self.transactions[ref] = {"status": "ongoing", "amount": payload["amount"]}
            return httpx.Response(200, json={"status": True, "message": "Authorization URL created", "data": {
                "authorization_url": f"https://checkout.paystack.test/{ref}",
                "access_code": f"AC_{ref}",
                "reference": ref,
            }})

        if request.method == "GET" and path.startswith("/transaction/verify/"):
            if self.verify_http_status:
                return httpx.Response(self.verify_http_status, text="upstream error")
            ref = path.rsplit("/", 1)[-1]
            tx = self.transactions.get(ref)
            if tx is None:
                return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": {
                "id": 4099260516,
                "reference": ref,
                "status": tx["status"],
                "amount": tx["amount"],
                "gateway_response": tx.get("gateway_response", "Approved"),
            }})

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def settle(self, reference: str, status: str = "success", amount_kobo=None, gateway_response=None):
        tx = self.transactions.setdefault(reference, {"amount": amount_kobo or 0})
        tx["status"] = status
        if amount_kobo is not None:
            tx["amount"] = amount_kobo
        if gateway_response:
            tx["gateway_response"] = gateway_response

    def verify_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.startswith("/transaction/verify/"))


@pytest.fixture
def paystack(monkeypatch):
    """Routes payment_service through a Paystack adapter backed by FakePaystack."""
    fake = FakePaystack()
    adapter = PaystackGateway(
        PAYSTACK_TEST_CONFIG,
        client=httpx.Client(transport=httpx.MockTransport(fake.handler)),
    )
    fake.adapter = adapter
    monkeypatch.setattr(payment_service, "gateway", PaymentGateway({"paystack": adapter}))
    return fake
