"""
Alembic Environment Configuration
===================================
Migrations read DATABASE_URL from config.settings, not alembic.ini.
Every model module is imported below so autogenerate sees all tables.
"""

import sys
import os
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import DATABASE_URL
from config.database import Base

# ==========================================
# Models
# ==========================================
from modules.user.models import User  # noqa: F401
from modules.customer.models import Address  # noqa: F401
from modules.catalog.models import Product, ProductVariant  # noqa: F401
from modules.coupon.models import Coupon  # noqa: F401
from modules.cart.models import Cart, CartItem, CartCoupon  # noqa: F401
from modules.order.models import Order, OrderItem, OrderAppliedCoupon, OrderStatusLog  # noqa: F401
from modules.payment.models import PaymentLedgerEntry  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
