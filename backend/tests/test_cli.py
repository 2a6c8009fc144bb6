# Overview: Pytest coverage for the Flask CLI command groups.

from decimal import Decimal

from atlaspos.models import Register, StockLevel, Store, Tenant, User
from atlaspos.services import shift_service


class TestBootstrap:
    def test_bootstrap_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "bootstrap", "--code", "DEMO", "--tenant", "Demo"])
        second = runner.invoke(args=["system", "bootstrap", "--code", "DEMO", "--tenant", "Demo"])

        assert first.exit_code == 0, first.output
        assert "Created tenant" in first.output
        assert second.exit_code == 0, second.output
        assert "Created" not in second.output
        assert db_session.query(Tenant).filter_by(code="DEMO").count() == 1
        assert db_session.query(Store).count() == 1
        assert db_session.query(User).filter_by(role="admin").count() == 1
        assert db_session.query(Register).count() == 1


class TestInventoryCommands:
    def test_adjust_and_read(self, app, db_session, tenant_a, store_a, coffee):
        _, variant = coffee
        runner = app.test_cli_runner()
        ids = ["--tenant-id", str(tenant_a.id), "--store-id", str(store_a.id), "--variant-id", str(variant.id)]

        result = runner.invoke(args=["inventory", "adjust", *ids, "--delta", "7.5", "--reason", "receive"])
        assert result.exit_code == 0, result.output
        assert "7.500" in result.output

        result = runner.invoke(args=["inventory", "on-hand", *ids])
        assert "On hand: 7.500" in result.output

        result = runner.invoke(args=["inventory", "ledger", *ids])
        assert "manual:" in result.output
        assert "receive" in result.output

    def test_adjust_rejects_negative_balance(self, app, db_session, tenant_a, store_a, coffee):
        _, variant = coffee
        result = app.test_cli_runner().invoke(args=[
            "inventory", "adjust", "--tenant-id", str(tenant_a.id), "--store-id", str(store_a.id),
            "--variant-id", str(variant.id), "--delta", "-1",
        ])
        assert result.exit_code == 1
        assert "FAIL Stock cannot go below zero." in result.output

    def test_adjust_rejects_non_numeric_delta(self, app, db_session, tenant_a, store_a, coffee):
        _, variant = coffee
        result = app.test_cli_runner().invoke(args=[
            "inventory", "adjust", "--tenant-id", str(tenant_a.id), "--store-id", str(store_a.id),
            "--variant-id", str(variant.id), "--delta", "lots",
        ])
        assert result.exit_code == 2

    def test_verify(self, app, db_session, tenant_a, store_a, stocked_coffee):
        runner = app.test_cli_runner()
        args = ["inventory", "verify", "--tenant-id", str(tenant_a.id)]

        assert runner.invoke(args=args).exit_code == 0

        level = db_session.query(StockLevel).one()
        level.qty_on_hand = Decimal("3")
        db_session.commit()

        result = runner.invoke(args=args)
        assert result.exit_code == 1
        assert "on hand 3.000 vs ledger 10.000" in result.output


class TestShiftCommands:
    def test_report(self, app, db_session, ctx_a, tenant_a, register_a):
        shift = shift_service.open_register(ctx_a, register_a.id, opening_float="40")
        result = app.test_cli_runner().invoke(args=[
            "shifts", "report", "--tenant-id", str(tenant_a.id), "--shift-id", str(shift.id),
        ])
        assert result.exit_code == 0, result.output
        assert "(OPEN)" in result.output
        assert "40.00" in result.output

    def test_report_missing_shift(self, app, db_session, tenant_a):
        result = app.test_cli_runner().invoke(args=[
            "shifts", "report", "--tenant-id", str(tenant_a.id), "--shift-id", "999999",
        ])
        assert result.exit_code == 1
        assert "FAIL Shift not found" in result.output
