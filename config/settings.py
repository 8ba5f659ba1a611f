"""
Corisio - Centralized Configuration
====================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
import sys
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DATABASE_URL = os.getenv("DATABASE_URL", "")

if not DATABASE_URL:
    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME")

    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 🔐 Security
# ==========================================
SECRET_KEY = os.getenv("SECRET_KEY")

if not SECRET_KEY:
    print("[ERROR] Critical: SECRET_KEY missing in .env")
    sys.exit(1)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


# ==========================================
# 💳 Payment Providers
# ==========================================
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")

PALMPAY_MERCHANT_ID = os.getenv("PALMPAY_MERCHANT_ID", "")
PALMPAY_SECRET_KEY = os.getenv("PALMPAY_SECRET_KEY", "")
PALMPAY_BASE_URL = os.getenv("PALMPAY_BASE_URL", "https://api.palmpay.com")

OPAY_MERCHANT_ID = os.getenv("OPAY_MERCHANT_ID", "")
OPAY_PUBLIC_KEY = os.getenv("OPAY_PUBLIC_KEY", "")
OPAY_PRIVATE_KEY = os.getenv("OPAY_PRIVATE_KEY", "")
OPAY_BASE_URL = os.getenv("OPAY_BASE_URL", "https://sandbox-cashierapi.opayweb.com")

PAYMENT_HTTP_TIMEOUT = float(os.getenv("PAYMENT_HTTP_TIMEOUT") or "15")
PAYMENT_VERIFY_ATTEMPTS = int(os.getenv("PAYMENT_VERIFY_ATTEMPTS") or "3")
PAYMENT_INIT_ATTEMPTS = int(os.getenv("PAYMENT_INIT_ATTEMPTS") or "2")

# Fee schedule: percent of amount, capped, plus a fixed part (major units)
PAYMENT_FEE_CAP = 200000
PAYMENT_FEES = {
    "paystack": {"percentage": 1.5, "cap": PAYMENT_FEE_CAP, "fixed": 0},
    "palmpay": {"percentage": 1.4, "cap": PAYMENT_FEE_CAP, "fixed": 0},
    "opay": {"percentage": 2.5, "cap": PAYMENT_FEE_CAP, "fixed": 0},
    "cash_on_delivery": {"percentage": 0, "cap": 0, "fixed": 0},
}


@dataclass(frozen=True)
class PaystackConfig:
    secret_key: str
    base_url: str
    timeout: float


@dataclass(frozen=True)
class PalmPayConfig:
    merchant_id: str
    secret_key: str
    base_url: str
    timeout: float


@dataclass(frozen=True)
class OPayConfig:
    merchant_id: str
    public_key: str
    private_key: str
    base_url: str
    timeout: float


PAYSTACK_CONFIG = PaystackConfig(
    secret_key=PAYSTACK_SECRET_KEY,
    base_url=PAYSTACK_BASE_URL,
    timeout=PAYMENT_HTTP_TIMEOUT,
)
PALMPAY_CONFIG = PalmPayConfig(
    merchant_id=PALMPAY_MERCHANT_ID,
    secret_key=PALMPAY_SECRET_KEY,
    base_url=PALMPAY_BASE_URL,
    timeout=PAYMENT_HTTP_TIMEOUT,
)
OPAY_CONFIG = OPayConfig(
    merchant_id=OPAY_MERCHANT_ID,
    public_key=OPAY_PUBLIC_KEY,
    private_key=OPAY_PRIVATE_KEY,
    base_url=OPAY_BASE_URL,
    timeout=PAYMENT_HTTP_TIMEOUT,
)


# ==========================================
# 🛒 Checkout
# ==========================================
DEFAULT_PAYMENT_PROVIDER = os.getenv("DEFAULT_PAYMENT_PROVIDER", "paystack")
DELIVERY_FEE = int(os.getenv("DELIVERY_FEE") or "0")
TAX_PERCENT = float(os.getenv("TAX_PERCENT") or "0")
CART_TTL_DAYS = int(os.getenv("CART_TTL_DAYS") or "7")
RETURN_WINDOW_DAYS = 7
SHIPPING_ESTIMATE_DAYS = 3


# ==========================================
# 🔔 Notifications
# ==========================================
NOTIFICATION_URL = os.getenv("NOTIFICATION_URL", "")
NOTIFICATION_API_KEY = os.getenv("NOTIFICATION_API_KEY", "")


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Base URL for callbacks
BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
MOBILE_APP_URL = os.getenv("MOBILE_APP_URL", "corisio-app://")
