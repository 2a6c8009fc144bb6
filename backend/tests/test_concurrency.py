# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Concurrency tests.

Each worker runs in its own thread with its own app context (and so its own
session and connection). A file database is required: the in-memory one
used by the rest of the suite is a single shared connection.
"""

import threading
from decimal import Decimal

import pytest

from atlaspos import create_app
from atlaspos.context import ActingContext
from atlaspos.errors import ConsistencyError, NegativeStockError, PosError
from atlaspos.extensions import db
from atlaspos.models import InventoryLedgerEntry, Payment, Product, Register, Shift, Store, Tenant, User, Variant
from atlaspos.services import order_service, shift_service, stock_service

D = Decimal


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'INVENTORY_ALLOW_NEGATIVE_STOCK': False,
    })
    with app.app_context():
        db.create_all()

        tenant = Tenant(name="Concurrency Tenant", code="CONC")
        db.session.add(tenant)
        db.session.flush()
        store = Store(tenant_id=tenant.id, name="Concurrency Store", code="C1")
        db.session.add(store)
        db.session.flush()
        user = User(tenant_id=tenant.id, store_id=store.id, name="Concurrent Cashier",
                    email="concurrent@example.com", role="cashier")
        register = Register(tenant_id=tenant.id, store_id=store.id, name="Till 1")
        product = Product(tenant_id=tenant.id, title="Concurrent Product", price=D("10.00"))
        db.session.add_all([user, register, product])
        db.session.flush()
        variant = Variant(product_id=product.id, name="Default", price=D("10.00"),
                          cost=D("4.00"), is_default=True)
        db.session.add(variant)
        db.session.commit()

        app.seed = {
            "ctx": ActingContext.for_user(user),
            "store_id": store.id,
            "register_id": register.id,
            "variant_id": variant.id,
        }
        stock_service.adjust(app.seed["ctx"], variant.id, store.id, 5, "receive", note="Seed inventory")

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


def run_workers(app, count, target):
    """Run `target` in `count` threads; returns (results, errors)."""
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                value = target()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestConcurrentStock:
    def test_no_oversell_under_contention(self, file_app):
        seed = file_app.seed

        results, errors = run_workers(
            file_app, 8,
            lambda: stock_service.adjust(seed["ctx"], seed["variant_id"], seed["store_id"], -1, "sale"),
        )

        assert len(results) == 5
        assert len(errors) == 3
        assert all(isinstance(e, NegativeStockError) for e in errors)
        with file_app.app_context():
            assert stock_service.get_on_hand(seed["ctx"], seed["variant_id"], seed["store_id"]) == 0
            assert stock_service.ledger_balance(seed["ctx"], seed["variant_id"], seed["store_id"]) == 0
            assert stock_service.verify_balances(seed["ctx"]) == []


class TestConcurrentCapture:
    def test_capture_happens_once(self, file_app):
        seed = file_app.seed
        with file_app.app_context():
            order = order_service.create_draft(seed["ctx"])
            order_service.add_item(seed["ctx"], order.id, seed["variant_id"], 2)
            order_id = order.id

        results, errors = run_workers(
            file_app, 6,
            lambda: order_service.capture(seed["ctx"], order_id, "cash").status,
        )

        assert errors == []
        assert results == ["paid"] * 6
        with file_app.app_context():
            assert db.session.query(Payment).filter_by(order_id=order_id).count() == 1
            assert db.session.query(InventoryLedgerEntry).filter_by(reason="sale").count() == 1
            assert stock_service.get_on_hand(seed["ctx"], seed["variant_id"], seed["store_id"]) == D("3")


class TestConcurrentShifts:
    def test_one_open_shift_per_register(self, file_app):
        seed = file_app.seed

        results, errors = run_workers(
            file_app, 5,
            lambda: shift_service.open_register(seed["ctx"], seed["register_id"], opening_float="50").id,
        )

        assert len(results) == 1
        assert len(errors) == 4
        assert all(isinstance(e, ConsistencyError) for e in errors)
        assert all(isinstance(e, PosError) for e in errors)
        with file_app.app_context():
            open_shifts = db.session.query(Shift).filter(Shift.closed_at.is_(None)).all()
            assert [s.id for s in open_shifts] == results
