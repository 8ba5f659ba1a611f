"""
Corisio - Database Initialization
===================================
Creates every table that does not exist yet.

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --drop   # drop and recreate
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import inspect

from config.database import Base, engine
from modules.user.models import User  # noqa
from modules.customer.models import Address  # noqa
from modules.catalog.models import Product, ProductVariant  # noqa
from modules.coupon.models import Coupon  # noqa
from modules.cart.models import Cart, CartItem, CartCoupon  # noqa
from modules.order.models import Order, OrderItem, OrderAppliedCoupon, OrderStatusLog  # noqa
from modules.payment.models import PaymentLedgerEntry  # noqa


def init_db(drop_first=False):
    if drop_first:
        print("Dropping all tables...")
        Base.metadata.drop_all(bind=engine)

    print("Creating all tables...")
    Base.metadata.create_all(bind=engine)

    tables = inspect(engine).get_table_names()
    print(f"\nTables in database ({len(tables)}):")
    for t in sorted(tables):
        print(f"  - {t}")
    print("\nDatabase initialized successfully!")


if __name__ == "__main__":
    init_db(drop_first="--drop" in sys.argv)
