# Overview: Flask CLI command groups for bootstrap, stock inspection and shift reports.

# backend/atlaspos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "atlaspos:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system bootstrap --tenant "Demo" --code DEMO --store "Main"
#   Idempotent: tenant, one store, an admin user and one register.
#
# Inventory:
# - python -m flask inventory on-hand --tenant-id 1 --store-id 1 --variant-id 3
# - python -m flask inventory adjust --tenant-id 1 --store-id 1 --variant-id 3 --delta 12 --reason receive
# - python -m flask inventory ledger --tenant-id 1 --store-id 1 --variant-id 3 --limit 50
# - python -m flask inventory verify --tenant-id 1 [--store-id 1]
#   Compare cached balances with ledger sums; exits 1 on drift.
#
# Shifts:
# - python -m flask shifts report --tenant-id 1 --shift-id 4

import sys

import click
from flask.cli import with_appcontext

from .context import ROLE_ADMIN, ActingContext
from .errors import ValidationError, as_result
from .extensions import db
from .models import Register, Store, Tenant, User
from .money import to_decimal
from .services import shift_service, stock_service


def _system_ctx(tenant_id, store_id=None, user_id=None):
    return ActingContext(tenant_id=tenant_id, store_id=store_id, user_id=user_id, role=ROLE_ADMIN)


def _fail(error):
    click.echo(f"FAIL {error.message}")
    for key, value in error.details.items():
        click.echo(f"   {key}: {value}")
    sys.exit(1)


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Schema ready.")


@system_group.command('bootstrap')
@click.option('--tenant', 'tenant_name', default='Default Tenant', show_default=True)
@click.option('--code', default='DEFAULT', show_default=True, help='Tenant code (unique)')
@click.option('--store', 'store_name', default='Main Store', show_default=True)
@click.option('--admin-email', default='admin@atlaspos.local', show_default=True)
@with_appcontext
def bootstrap(tenant_name, code, store_name, admin_email):
    """Create a tenant, store, admin user and register if they do not exist."""
    tenant = db.session.query(Tenant).filter_by(code=code).first()
    if tenant is None:
        tenant = Tenant(name=tenant_name, code=code, is_active=True)
        db.session.add(tenant)
        db.session.flush()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")

    store = db.session.query(Store).filter_by(tenant_id=tenant.id, name=store_name).first()
    if store is None:
        store = Store(tenant_id=tenant.id, name=store_name)
        db.session.add(store)
        db.session.flush()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")

    admin = db.session.query(User).filter_by(tenant_id=tenant.id, email=admin_email).first()
    if admin is None:
        admin = User(tenant_id=tenant.id, store_id=store.id, name="Admin", email=admin_email, role=ROLE_ADMIN)
        db.session.add(admin)
        click.echo(f"PASS Created admin user: {admin_email}")

    register = db.session.query(Register).filter_by(tenant_id=tenant.id, store_id=store.id).first()
    if register is None:
        register = Register(tenant_id=tenant.id, store_id=store.id, name="Register 1")
        db.session.add(register)
        click.echo("PASS Created register: Register 1")

    db.session.commit()
    click.echo(f"\nTenant {tenant.id} / store {store.id} / register {register.id} ready.")


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Stock ledger inspection and adjustments."""


@inventory_group.command('on-hand')
@click.option('--tenant-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@with_appcontext
def on_hand_cli(tenant_id, store_id, variant_id):
    """Show the cached balance and the ledger sum for one variant."""
    ctx = _system_ctx(tenant_id, store_id)
    result = as_result(stock_service.get_on_hand, ctx, variant_id, store_id)
    if not result.ok:
        _fail(result.error)
    ledger = stock_service.ledger_balance(ctx, variant_id, store_id)
    click.echo(f"On hand: {result.value}  (ledger: {ledger})")


@inventory_group.command('adjust')
@click.option('--tenant-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@click.option('--delta', type=str, required=True, help='Signed quantity, e.g. 12 or -1.5')
@click.option('--reason', default='adjustment', show_default=True)
@click.option('--note', default=None)
@click.option('--user-id', type=int, default=None)
@with_appcontext
def adjust_cli(tenant_id, store_id, variant_id, delta, reason, note, user_id):
    """Apply a manual stock adjustment."""
    try:
        delta = to_decimal(delta)
    except ValidationError:
        raise click.BadParameter(f"{delta!r} is not a number", param_hint="--delta")
    ctx = _system_ctx(tenant_id, store_id, user_id)
    result = as_result(
        stock_service.adjust, ctx, variant_id, store_id, delta, reason,
        reference={"type": "manual", "id": None}, note=note,
    )
    if not result.ok:
        _fail(result.error)
    click.echo(f"PASS On hand is now {result.value}")


@inventory_group.command('ledger')
@click.option('--tenant-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def ledger_cli(tenant_id, store_id, variant_id, limit):
    """List ledger entries for one variant in one store."""
    ctx = _system_ctx(tenant_id, store_id)
    entries = stock_service.list_ledger(ctx, variant_id, store_id, limit=limit)
    if not entries:
        click.echo("No ledger entries found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<8} {'Delta':>10}  {'Reason':<12} {'Ref':<16} {'User':<6} {'Created':<22} {'Note'}")
    click.echo("="*100)
    for entry in entries:
        ref = f"{entry.ref_type}:{entry.ref_id}" if entry.ref_type else "-"
        data = entry.to_dict()
        click.echo(
            f"{entry.id:<8} {data['qty_delta']:>10}  {entry.reason:<12} {ref:<16} "
            f"{entry.user_id or '-':<6} {data['created_at'] or '-':<22} {entry.note or ''}"
        )
    click.echo("="*100 + "\n")


@inventory_group.command('verify')
@click.option('--tenant-id', type=int, required=True)
@click.option('--store-id', type=int, default=None)
@with_appcontext
def verify_cli(tenant_id, store_id):
    """Check that every cached balance equals its ledger sum."""
    drift = stock_service.verify_balances(_system_ctx(tenant_id), store_id=store_id)
    if not drift:
        click.echo("PASS All balances match the ledger.")
        return
    click.echo(f"FAIL {len(drift)} balance(s) differ from the ledger:")
    for row in drift:
        click.echo(
            f"   store {row['store_id']} variant {row['variant_id']}: "
            f"on hand {row['qty_on_hand']} vs ledger {row['ledger_sum']}"
        )
    sys.exit(1)


# =============================================================================
# SHIFTS
# =============================================================================

@click.group('shifts')
def shifts_group():
    """Register shift reports."""


@shifts_group.command('report')
@click.option('--tenant-id', type=int, required=True)
@click.option('--shift-id', type=int, required=True)
@with_appcontext
def report_cli(tenant_id, shift_id):
    """Print the cash reconciliation for a shift."""
    result = as_result(shift_service.build_report, _system_ctx(tenant_id), shift_id)
    if not result.ok:
        _fail(result.error)
    report = result.value

    status = "OPEN" if report["is_open"] else "CLOSED"
    click.echo(f"\nShift {report['shift_id']} ({status})")
    for key in (
        "sales_count", "gross_sales", "refund_total", "net", "cash_sales", "cash_refunds",
        "cash_in", "cash_out", "opening_float", "expected_cash", "closing_cash", "cash_over_short",
    ):
        value = report[key]
        click.echo(f"   {key:<16} {value if value is not None else '-'}")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(shifts_group)
