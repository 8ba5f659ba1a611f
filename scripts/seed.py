"""
Corisio - Demo Data Seeder
============================
Seeds an admin, a customer with an address, a few products and coupons.

Usage:
    python scripts/seed.py          # seed (skips rows that already exist)
    python scripts/seed.py --reset  # drop everything and reseed
"""

import sys
import os
from datetime import timedelta
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from common.helpers import now_utc
from common.security import create_token
from modules.user.models import User
from modules.customer.models import Address
from modules.catalog.models import Product, ProductVariant, ProductStatus
from modules.coupon.models import Coupon, PromoType
from modules.cart.models import Cart, CartItem, CartCoupon  # noqa
from modules.order.models import Order, OrderItem, OrderAppliedCoupon, OrderStatusLog  # noqa
from modules.payment.models import PaymentLedgerEntry  # noqa

PRODUCTS = [
    # name, category, price, stock, variants
    ("Ankara Print Shirt", "fashion", "15000.00", 40, [("M", None, 15), ("L", None, 15), ("XL", "16500.00", 10)]),
    ("Shea Butter 500g", "beauty", "4500.00", 120, []),
    ("Bluetooth Speaker", "electronics", "38000.00", 12, []),
    ("Jollof Spice Mix", "groceries", "2500.00", 300, []),
]

COUPONS = [
    # code, name, type, value, usage_limit, min order
    ("WELCOME10", "Welcome 10%", PromoType.PERCENTAGE, "10", None, None),
    ("FLAT2000", "N2,000 off", PromoType.FIXED, "2000", 500, "10000"),
]


def seed(db):
    if not db.query(User).filter(User.email == "admin@corisio.test").first():
        db.add(User(email="admin@corisio.test", full_name="Admin", is_admin=True))
    customer = db.query(User).filter(User.email == "ada@corisio.test").first()
    if not customer:
        customer = User(email="ada@corisio.test", phone="08030000000", full_name="Ada Obi")
        db.add(customer)
        db.flush()
        db.add(Address(
            user_id=customer.id, full_name="Ada Obi", address="12 Admiralty Way, Lekki",
            phone="08030000000", state="Lagos", city="Lagos", is_default=True,
        ))
    print("  users: admin@corisio.test, ada@corisio.test")

    for name, category, price, stock, variants in PRODUCTS:
        if db.query(Product).filter(Product.name == name).first():
            continue
        product = Product(
            name=name, category=category, sales_price=Decimal(price),
            stock_quantity=stock, status=ProductStatus.ACTIVE,
        )
        for v_name, v_price, v_stock in variants:
            product.variants.append(ProductVariant(
                name=v_name, sales_price=Decimal(v_price) if v_price else None, stock_quantity=v_stock,
            ))
        db.add(product)
    print(f"  products: {len(PRODUCTS)}")

    now = now_utc()
    for code, name, promo_type, value, limit, minimum in COUPONS:
        if db.query(Coupon).filter(Coupon.coupon_code == code).first():
            continue
        db.add(Coupon(
            coupon_code=code, promotion_name=name, promo_type=promo_type.value,
            discount_value=Decimal(value), usage_limit=limit,
            minimum_order_value=Decimal(minimum) if minimum else None,
            start_date_time=now, end_date_time=now + timedelta(days=90),
        ))
    print(f"  coupons: {len(COUPONS)}")

    db.commit()
    print(f"\nCustomer token (sub={customer.id}):\n{create_token({'sub': str(customer.id)})}")


if __name__ == "__main__":
    if "--reset" in sys.argv:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        print("Seeding...")
        seed(db)
        print("Done.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
