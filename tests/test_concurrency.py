"""
Two sessions racing each other on a file-backed SQLite database.

The shared in-memory engine hands every session the same connection, so it
cannot show what happens when two transactions interleave. These tests build
their own engine on a temp file; each thread gets its own connection and
SQLite's write lock does the serializing.
"""

import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from common.exceptions import InsufficientInventoryError
from config.database import Base
from modules.catalog.models import Product, ProductStatus
from modules.inventory.service import inventory_service
from modules.order.models import Order, OrderItem, OrderStatusLog, OrderStatus, PaymentStatus
from modules.payment.gateways import VerifiedPayment, VerifyStatus
from modules.payment.ledger import payment_ledger
from modules.payment.models import LedgerStatus
from modules.payment.reconciliation import reconciliation_service
from modules.user.models import User


@pytest.fixture
def race_sessions(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


def run_together(factory, work, count=2):
    """
    Run `work(session)` in `count` threads released at the same moment.
    Each thread commits on success and rolls back on error; the outcome
    (return value or exception) is collected per thread.
    """
    barrier = threading.Barrier(count)
    outcomes = []
    lock = threading.Lock()

    def runner():
        session = factory()
        try:
            barrier.wait()
            try:
                outcome = work(session)
                session.commit()
            except Exception as e:
                session.rollback()
                outcome = e
            with lock:
                outcomes.append(outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=runner) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    assert len(outcomes) == count
    return outcomes


class TestLastUnitsRace:

    def test_only_one_checkout_gets_the_last_units(self, race_sessions):
        seed = race_sessions()
        product = Product(name="Aso Oke Set", category="fashion", sales_price=Decimal("45000"),
                          stock_quantity=3, status=ProductStatus.ACTIVE)
        seed.add(product)
        seed.commit()
        product_id = product.id
        seed.close()

        line = SimpleNamespace(product_id=product_id, variant_id=None, quantity=2, name="Aso Oke Set")

        def checkout(session):
            inventory_service.reserve_items(session, [line])
            return "reserved"

        outcomes = run_together(race_sessions, checkout)

        assert outcomes.count("reserved") == 1
        losers = [o for o in outcomes if o != "reserved"]
        assert len(losers) == 1
        assert isinstance(losers[0], InsufficientInventoryError)

        check = race_sessions()
        assert check.get(Product, product_id).stock_quantity == 1
        check.close()


class TestDoubleConfirmationRace:

    def _seed_pending_payment(self, session):
        user = User(email="ada@example.com", phone="08030000001", full_name="Ada Obi", is_admin=False)
        product = Product(name="Ankara Shirt", category="fashion", sales_price=Decimal("1000"),
                          stock_quantity=5, status=ProductStatus.ACTIVE)
        session.add_all([user, product])
        session.flush()

        order = Order(
            order_number="ORD-260101-424242",
            order_slug="RACEORD1",
            user_id=user.id,
            order_status=OrderStatus.PENDING,
            delivery_method="pickup",
            payment_method="paystack",
            payment_status=PaymentStatus.PENDING,
            delivery_fee=0, service_charge=0, tax=0, discount=0,
        )
        order.items.append(OrderItem(product_id=product.id, name="Ankara Shirt", unit_price=Decimal("1000"), quantity=2))
        order.recompute_totals()
        order.seed_history()
        ref = "PAY_1_1760000000000"
        order.payment_reference = ref
        session.add(order)
        session.flush()

        payment_ledger.log_purchase_pending(
            session, channel="paystack", user_id=user.id,
            meta={"order_ids": [order.id], "order_slugs": [order.order_slug]},
            amount=order.total_amount, transaction_ref=ref,
        )
        session.commit()
        return order.id, ref

    def test_same_reference_confirms_once(self, race_sessions):
        seed = race_sessions()
        order_id, ref = self._seed_pending_payment(seed)
        seed.close()

        verified = VerifiedPayment(
            provider="paystack", reference=ref, status=VerifyStatus.SUCCESS,
            amount=Decimal("2000.00"), transaction_id="4099260516", raw={},
        )

        def confirm(session):
            return reconciliation_service.reconcile(session, verified)

        outcomes = run_together(race_sessions, confirm)

        assert all(getattr(o, "success", False) for o in outcomes), outcomes
        assert sorted(o.duplicate for o in outcomes) == [False, True]

        check = race_sessions()
        confirmations = check.query(OrderStatusLog).filter(
            OrderStatusLog.order_id == order_id,
            OrderStatusLog.note == "Payment confirmed",
        ).count()
        assert confirmations == 1

        order = check.get(Order, order_id)
        assert order.order_status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.COMPLETED

        entry = payment_ledger.get_by_ref(check, ref)
        assert entry.payment_status == LedgerStatus.CONFIRMED
        assert entry.is_settled
        check.close()
