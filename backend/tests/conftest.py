"""
Pytest fixtures for the AtlasPOS core tests.

Provides an in-memory application, a per-test table wipe, and two tenants
(A and B) with stores, users, a register and stocked products.
"""

from decimal import Decimal

import pytest

from atlaspos import create_app
from atlaspos.context import ActingContext
from atlaspos.extensions import db
from atlaspos.models import (
    Customer, Product, Register, Store, Tax, Tenant, User, Variant,
)
from atlaspos.services import stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVENTORY_ALLOW_NEGATIVE_STOCK': False,
        'INVENTORY_ALLOW_ADJUST_WHEN_TRACKING_DISABLED': False,
        'ORDER_PAYMENT_METHODS': ('cash', 'card'),
        'LOYALTY_POINTS_ENABLED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_product(session, tenant, title="Coffee", price="10.00", cost="4.00",
                 track_stock=True, taxes=(), categories=(), is_active=True):
    """Create a product with one default variant priced like the product."""
    product = Product(
        tenant_id=tenant.id,
        title=title,
        price=Decimal(price),
        track_stock=track_stock,
        is_active=is_active,
    )
    product.taxes = list(taxes)
    product.categories = list(categories)
    session.add(product)
    session.flush()

    variant = Variant(
        product_id=product.id,
        name=title,
        price=Decimal(price),
        cost=Decimal(cost) if cost is not None else None,
        track_stock=track_stock,
        is_default=True,
    )
    session.add(variant)
    session.commit()
    return product, variant


def stock(ctx, variant, store, qty):
    """Receive stock through the ledger."""
    return stock_service.adjust(ctx, variant.id, store.id, qty, "receive")


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Tenant A - Acme Coffee", code="ACME", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Tenant B - Beta Bakery", code="BETA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def store_a(db_session, tenant_a):
    """Create Store A1 in Tenant A."""
    store = Store(tenant_id=tenant_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, tenant_a):
    """Create a second store in Tenant A."""
    store = Store(tenant_id=tenant_a.id, name="Store A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, tenant_b):
    """Create Store B1 in Tenant B."""
    store = Store(tenant_id=tenant_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a, store_a):
    user = User(tenant_id=tenant_a.id, store_id=store_a.id, name="Cashier A",
                email="cashier@acme.test", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier_a_other(db_session, tenant_a, store_a):
    user = User(tenant_id=tenant_a.id, store_id=store_a.id, name="Cashier A (second)",
                email="cashier2@acme.test", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager_a(db_session, tenant_a, store_a):
    user = User(tenant_id=tenant_a.id, store_id=store_a.id, name="Manager A",
                email="manager@acme.test", role="manager")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier_b(db_session, tenant_b, store_b):
    user = User(tenant_id=tenant_b.id, store_id=store_b.id, name="Cashier B",
                email="cashier@beta.test", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def ctx_a(cashier_a):
    """Acting context for the Tenant A cashier in Store A1."""
    return ActingContext.for_user(cashier_a)


@pytest.fixture(scope='function')
def manager_ctx_a(manager_a):
    return ActingContext.for_user(manager_a)


@pytest.fixture(scope='function')
def ctx_b(cashier_b):
    return ActingContext.for_user(cashier_b)


@pytest.fixture(scope='function')
def register_a(db_session, tenant_a, store_a):
    register = Register(tenant_id=tenant_a.id, store_id=store_a.id, name="Front Counter")
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def coffee(db_session, tenant_a):
    """Tracked product at 10.00 (cost 4.00) with its default variant."""
    return make_product(db_session, tenant_a)


@pytest.fixture(scope='function')
def stocked_coffee(coffee, ctx_a, store_a):
    """Coffee with 10 units on hand in Store A1."""
    product, variant = coffee
    stock(ctx_a, variant, store_a, 10)
    return product, variant


@pytest.fixture(scope='function')
def inclusive_vat(db_session, tenant_a):
    tax = Tax(tenant_id=tenant_a.id, name="VAT 10%", rate=Decimal("10"), inclusive=True)
    db_session.add(tax)
    db_session.commit()
    return tax


@pytest.fixture(scope='function')
def sales_tax(db_session, tenant_a):
    tax = Tax(tenant_id=tenant_a.id, name="Sales tax 8%", rate=Decimal("8"), inclusive=False)
    db_session.add(tax)
    db_session.commit()
    return tax


@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    customer = Customer(tenant_id=tenant_a.id, name="Ada Customer", email="ada@acme.test")
    db_session.add(customer)
    db_session.commit()
    return customer
