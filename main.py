"""
Corisio - Application Entry Point
===================================
FastAPI app initialization, middleware, error handling and router registration.
"""

import logging
import time as _time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine
from common.exceptions import CorisioError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
scheduler_logger = logging.getLogger("corisio.scheduler")
request_logger = logging.getLogger("corisio.request")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.user.models import User  # noqa: F401
from modules.customer.models import Address  # noqa: F401
from modules.catalog.models import Product, ProductVariant  # noqa: F401
from modules.coupon.models import Coupon  # noqa: F401
from modules.cart.models import Cart, CartItem, CartCoupon  # noqa: F401
from modules.order.models import Order, OrderItem, OrderAppliedCoupon, OrderStatusLog  # noqa: F401
from modules.payment.models import PaymentLedgerEntry  # noqa: F401

# ==========================================
# Import routers
# ==========================================
from modules.cart.routes import router as cart_router
from modules.order.routes import router as order_router
from modules.order.admin_routes import router as order_admin_router
from modules.payment.routes import router as payment_router
from modules.payment.admin_routes import router as payment_admin_router
from modules.coupon.routes import router as coupon_router
from modules.coupon.admin_routes import router as coupon_admin_router
from modules.customer.routes import router as customer_router
from modules.inventory.admin_routes import router as inventory_admin_router


# ==========================================
# Background Scheduler: Stale Cart Cleanup
# ==========================================
def _expire_stale_carts():
    """Background job: deactivate carts past their TTL every 10 minutes."""
    db = SessionLocal()
    try:
        from modules.cart.service import cart_service
        count = cart_service.expire_stale_carts(db)
        if count:
            db.commit()
            scheduler_logger.info(f"Expired {count} stale carts")
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Cart cleanup error: {e}")
    finally:
        db.close()


scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)

    scheduler.add_job(_expire_stale_carts, 'interval', minutes=10, id='expire_carts')
    scheduler.start()
    scheduler_logger.info("Background scheduler started (carts: 10m)")
    yield
    scheduler.shutdown()
    scheduler_logger.info("Background scheduler stopped")


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Corisio",
    description="Checkout and payment settlement",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handler: domain errors -> JSON
# ==========================================
@app.exception_handler(CorisioError)
async def corisio_error_handler(request: Request, exc: CorisioError):
    if exc.status_code >= 500:
        logging.getLogger("corisio.error").error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)


# ==========================================
# Middleware: Request Timing Log
# ==========================================
_SKIP_PATHS = ("/health", "/favicon.ico")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    path = request.url.path
    if any(path.startswith(p) for p in _SKIP_PATHS):
        return await call_next(request)

    start = _time.time()
    response = await call_next(request)
    elapsed_ms = int((_time.time() - start) * 1000)
    request_logger.info(f"{request.method} {path} -> {response.status_code} ({elapsed_ms}ms)")
    return response


# ==========================================
# Register Routers
# ==========================================
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(order_admin_router)
app.include_router(payment_router)
app.include_router(payment_admin_router)
app.include_router(coupon_router)
app.include_router(coupon_admin_router)
app.include_router(customer_router)
app.include_router(inventory_admin_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}
