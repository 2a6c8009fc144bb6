# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create two tenants with separate stores and users, then verify
that:
1. A user in Tenant A cannot read or write data owned by Tenant B
2. Passing a foreign store_id is rejected
3. Foreign rows are reported exactly like missing rows
4. A context without a tenant is refused before any lookup

Test Coverage:
- Store scoping helpers
- Orders: cross-tenant read/write blocked
- Inventory: cross-tenant adjust and read blocked
- Registers and shifts: cross-tenant access blocked
"""

import pytest

from atlaspos.context import ActingContext
from atlaspos.errors import NotFoundError, ValidationError
from atlaspos.models import Customer, InventoryLedgerEntry
from atlaspos.services import order_service, shift_service, stock_service
from atlaspos.services.tenant_service import (
    get_acting_user, require_store_in_tenant, resolve_store_id,
)
from conftest import make_product, stock


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_store_in_tenant_valid(self, db_session, tenant_a, store_a):
        """Store in its own tenant passes validation."""
        result = require_store_in_tenant(store_a.id, tenant_a.id)
        assert result.id == store_a.id

    def test_require_store_in_tenant_cross_tenant(self, db_session, tenant_a, store_b):
        """Store from a different tenant raises NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            require_store_in_tenant(store_b.id, tenant_a.id)
        assert exc_info.value.message == "Store not found"

    def test_require_store_in_tenant_nonexistent(self, db_session, tenant_a):
        """Non-existent store gets the same answer as a foreign one."""
        with pytest.raises(NotFoundError) as exc_info:
            require_store_in_tenant(99999, tenant_a.id)
        assert exc_info.value.message == "Store not found"

    def test_require_store_in_tenant_missing(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            require_store_in_tenant(None, tenant_a.id)

    def test_resolve_store_id(self, ctx_a, store_a, store_a2, cashier_a):
        assert resolve_store_id(ctx_a) == store_a.id
        assert resolve_store_id(ctx_a, 77) == 77
        assert resolve_store_id(ctx_a.with_store(store_a2.id), user=cashier_a) == store_a.id
        assert resolve_store_id(ctx_a.with_store(None), user=cashier_a) == store_a.id

    def test_acting_user_from_other_tenant(self, db_session, tenant_b, cashier_a):
        ctx = ActingContext(tenant_id=tenant_b.id, user_id=cashier_a.id)
        with pytest.raises(NotFoundError):
            get_acting_user(ctx)


class TestMissingTenant:
    """A context without a tenant never reaches the database."""

    def test_order_lookup(self, db_session):
        with pytest.raises(ValidationError):
            order_service.find(ActingContext(tenant_id=None), 1)

    def test_stock_read(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.get_on_hand(ActingContext(tenant_id=None), 1, 1)

    def test_shift_report(self, db_session):
        with pytest.raises(ValidationError):
            shift_service.get_report(ActingContext(tenant_id=None), 1)


class TestOrderIsolation:
    """Orders owned by Tenant A are invisible to Tenant B."""

    def test_read_blocked(self, db_session, ctx_a, ctx_b):
        order = order_service.create_draft(ctx_a)
        with pytest.raises(NotFoundError):
            order_service.find(ctx_b, order.id)

    def test_write_blocked(self, db_session, ctx_a, ctx_b, stocked_coffee):
        _, variant = stocked_coffee
        order = order_service.create_draft(ctx_a)
        order_service.add_item(ctx_a, order.id, variant.id, 1)

        with pytest.raises(NotFoundError):
            order_service.apply_discount(ctx_b, order.id, 1)
        with pytest.raises(NotFoundError):
            order_service.capture(ctx_b, order.id, "cash")

        assert order_service.find(ctx_a, order.id).status == "draft"

    def test_foreign_store_for_draft(self, db_session, manager_ctx_a, store_b):
        with pytest.raises(NotFoundError):
            order_service.create_draft(manager_ctx_a, store_id=store_b.id)

    def test_foreign_customer(self, db_session, ctx_a, tenant_b):
        customer = Customer(tenant_id=tenant_b.id, name="Bea")
        db_session.add(customer)
        db_session.commit()
        order = order_service.create_draft(ctx_a)
        with pytest.raises(NotFoundError):
            order_service.set_customer(ctx_a, order.id, customer.id)


class TestInventoryIsolation:
    """Stock and ledger rows stay inside their tenant."""

    def test_adjust_foreign_variant(self, db_session, ctx_b, store_b, stocked_coffee):
        _, variant = stocked_coffee
        with pytest.raises(NotFoundError):
            stock_service.adjust(ctx_b, variant.id, store_b.id, 1, "receive")

    def test_read_foreign_store(self, db_session, ctx_b, store_a, stocked_coffee):
        """Foreign balances read as zero, same as a key with no stock."""
        _, variant = stocked_coffee
        assert stock_service.get_on_hand(ctx_b, variant.id, store_a.id) == 0
        assert stock_service.ledger_balance(ctx_b, variant.id, store_a.id) == 0

    def test_ledger_entries_carry_tenant(self, db_session, ctx_a, ctx_b, tenant_a, tenant_b, store_b, stocked_coffee):
        _, bread = make_product(db_session, tenant_b, title="Bread")
        stock(ctx_b, bread, store_b, 4)

        tenants = {e.tenant_id for e in db_session.query(InventoryLedgerEntry)}
        assert tenants == {tenant_a.id, tenant_b.id}
        assert stock_service.verify_balances(ctx_a) == []
        assert stock_service.verify_balances(ctx_b) == []


class TestShiftIsolation:
    """Registers and shifts owned by Tenant A cannot be used by Tenant B."""

    def test_open_foreign_register(self, db_session, ctx_b, register_a):
        with pytest.raises(NotFoundError):
            shift_service.open_register(ctx_b, register_a.id)

    def test_foreign_shift(self, db_session, ctx_a, ctx_b, register_a):
        shift = shift_service.open_register(ctx_a, register_a.id)
        with pytest.raises(NotFoundError):
            shift_service.move_cash(ctx_b, shift.id, "cash_in", "5")
        with pytest.raises(NotFoundError):
            shift_service.close_register(ctx_b, shift.id, closing_cash="0")

    def test_attach_foreign_order(self, db_session, ctx_a, cashier_b, register_a):
        shift = shift_service.open_register(ctx_a, register_a.id)
        foreign_order = order_service.create_draft(ActingContext.for_user(cashier_b))
        with pytest.raises(NotFoundError):
            shift_service.attach_order(ctx_a, foreign_order.id, shift.id)

    def test_listing_is_scoped(self, db_session, ctx_a, ctx_b, register_a):
        shift_service.open_register(ctx_a, register_a.id)
        assert shift_service.list_shifts(ctx_b) == []
        assert len(shift_service.list_shifts(ctx_a)) == 1
