# Overview: Stock ledger; every on-hand change is a ledger entry plus a balance update in one transaction.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..context import ActingContext
from ..errors import NegativeStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryLedgerEntry, Product, StockLevel, Variant
from ..money import QTY_EPSILON, ZERO, round_qty, to_decimal
from .concurrency import lock_for_update, run_with_retry, write_transaction
from .tenant_service import require_store_in_tenant
"""
Stock ledger invariants (authoritative)

- StockLevel.qty_on_hand == SUM(InventoryLedgerEntry.qty_delta) per
  (tenant, store, variant) after every committed transaction.
- Deltas are rounded to 3 places BEFORE they are applied, so the balance
  and the ledger sum are built from identical numbers.
- A balance below zero is refused unless INVENTORY_ALLOW_NEGATIVE_STOCK.
- Adjustments smaller than QTY_EPSILON write nothing.
- Variants with tracking disabled (on the variant or its product) are
  skipped with a log line unless INVENTORY_ALLOW_ADJUST_WHEN_TRACKING_DISABLED,
  in which case the write goes through with a warning.

Callers that are already inside a write_transaction (order capture/refund)
pass commit=False so the ledger write joins their unit of work.
"""


def get_on_hand(ctx: ActingContext, variant_id: int, store_id: int | None) -> Decimal:
    """Current balance for a variant in a store; 0 when no balance row exists."""
    tenant_id = ctx.require_tenant()
    if store_id is None:
        raise ValidationError("Store context is required.", field="store")
    value = (
        db.session.query(StockLevel.qty_on_hand)
        .filter_by(tenant_id=tenant_id, store_id=store_id, variant_id=variant_id)
        .scalar()
    )
    return round_qty(value) if value is not None else round_qty(ZERO)


def _resolve_variant(tenant_id: int, variant_id: int | None, product: Product | None) -> Variant:
    if product is not None:
        if product.tenant_id != tenant_id:
            raise NotFoundError("Product not found", field="product")
        if variant_id is None or variant_id not in {v.id for v in product.variants}:
            # Product hint wins over a variant that is not one of its own.
            variant_id = product.ensure_default_variant().id

    if variant_id is None:
        raise ValidationError("Variant id is required to adjust stock.", field="variant")

    variant = (
        db.session.query(Variant)
        .options(selectinload(Variant.product))
        .filter(Variant.id == variant_id)
        .first()
    )
    if variant is None or variant.product.tenant_id != tenant_id:
        raise NotFoundError("Variant not found", field="variant")
    return variant


def _lock_stock_level(tenant_id: int, store_id: int, variant_id: int) -> StockLevel:
    """Lock the balance row, creating it at 0 when this is the first movement."""
    q = db.session.query(StockLevel).filter_by(
        tenant_id=tenant_id, store_id=store_id, variant_id=variant_id
    )
    stock = lock_for_update(q).populate_existing().first()
    if stock is not None:
        return stock

    stock = StockLevel(tenant_id=tenant_id, store_id=store_id, variant_id=variant_id, qty_on_hand=ZERO)
    try:
        with db.session.begin_nested():
            db.session.add(stock)
    except IntegrityError:
        # Another writer created the row first; take theirs.
        stock = lock_for_update(q).populate_existing().one()
    return stock


def _apply(
    tenant_id: int,
    store_id: int,
    variant: Variant,
    delta: Decimal,
    reason: str,
    reference: dict | None,
    user_id: int | None,
    note: str | None,
) -> Decimal:
    stock = _lock_stock_level(tenant_id, store_id, variant.id)
    current = round_qty(stock.qty_on_hand)
    new_qty = round_qty(current + delta)

    if new_qty < 0 and not current_app.config.get("INVENTORY_ALLOW_NEGATIVE_STOCK", False):
        raise NegativeStockError(
            "Stock cannot go below zero.",
            field="qty",
            details={
                "variant_id": variant.id,
                "store_id": store_id,
                "on_hand": str(current),
                "delta": str(delta),
            },
        )

    stock.qty_on_hand = new_qty
    entry = InventoryLedgerEntry(
        tenant_id=tenant_id,
        store_id=store_id,
        variant_id=variant.id,
        qty_delta=delta,
        reason=reason,
        ref_type=(reference or {}).get("type"),
        ref_id=str(reference["id"]) if reference and reference.get("id") is not None else None,
        user_id=user_id,
        note=note,
    )
    db.session.add(entry)
    db.session.flush()
    return new_qty


def adjust(
    ctx: ActingContext,
    variant_id: int | None,
    store_id: int | None,
    delta,
    reason: str,
    *,
    reference: dict | None = None,
    user_id: int | None = None,
    note: str | None = None,
    product: Product | None = None,
    commit: bool = True,
) -> Decimal:
    """
    Apply a signed quantity change and record it in the ledger.

    Returns the balance after the change (or the unchanged balance when the
    change is skipped). With commit=False the caller owns the transaction.
    """
    tenant_id = ctx.require_tenant()
    if not reason:
        raise ValidationError("Reason is required.", field="reason")
    if store_id is None:
        raise ValidationError("Store id is required to adjust stock.", field="store")
    require_store_in_tenant(store_id, tenant_id)

    variant = _resolve_variant(tenant_id, variant_id, product)
    delta = round_qty(delta, field="delta")

    if abs(delta) < QTY_EPSILON:
        return get_on_hand(ctx, variant.id, store_id)

    if not (variant.track_stock and variant.product.track_stock):
        if not current_app.config.get("INVENTORY_ALLOW_ADJUST_WHEN_TRACKING_DISABLED", False):
            current_app.logger.info(
                "Stock adjustment skipped; tracking disabled for variant %s (store %s, reason %s)",
                variant.id, store_id, reason,
            )
            return get_on_hand(ctx, variant.id, store_id)
        current_app.logger.warning(
            "Adjusting stock for variant %s with tracking disabled (store %s, reason %s, delta %s)",
            variant.id, store_id, reason, delta,
        )

    user_id = user_id if user_id is not None else ctx.user_id

    if not commit:
        return _apply(tenant_id, store_id, variant, delta, reason, reference, user_id, note)

    def _op():
        with write_transaction():
            return _apply(tenant_id, store_id, variant, delta, reason, reference, user_id, note)

    new_qty = run_with_retry(_op)
    current_app.logger.info(
        "Stock adjusted: variant=%s store=%s delta=%s reason=%s on_hand=%s",
        variant.id, store_id, delta, reason, new_qty,
    )
    return new_qty


def list_ledger(
    ctx: ActingContext,
    variant_id: int,
    store_id: int,
    *,
    limit: int = 100,
) -> list[InventoryLedgerEntry]:
    """Ledger entries for one balance key, oldest first."""
    tenant_id = ctx.require_tenant()
    limit = max(1, min(int(limit), 1000))
    return (
        db.session.query(InventoryLedgerEntry)
        .filter_by(tenant_id=tenant_id, store_id=store_id, variant_id=variant_id)
        .order_by(InventoryLedgerEntry.id.asc())
        .limit(limit)
        .all()
    )


def ledger_balance(ctx: ActingContext, variant_id: int, store_id: int) -> Decimal:
    """Balance recomputed from the ledger alone."""
    tenant_id = ctx.require_tenant()
    total = (
        db.session.query(func.coalesce(func.sum(InventoryLedgerEntry.qty_delta), 0))
        .filter_by(tenant_id=tenant_id, store_id=store_id, variant_id=variant_id)
        .scalar()
    )
    return round_qty(total)


def verify_balances(ctx: ActingContext, store_id: int | None = None) -> list[dict]:
    """
    Compare every cached balance with its ledger sum.

    Returns one dict per key whose numbers disagree; an empty list means the
    projection is consistent. Keys that have ledger entries but no balance
    row are reported too.
    """
    tenant_id = ctx.require_tenant()

    sums_q = (
        db.session.query(
            InventoryLedgerEntry.store_id,
            InventoryLedgerEntry.variant_id,
            func.sum(InventoryLedgerEntry.qty_delta),
        )
        .filter(InventoryLedgerEntry.tenant_id == tenant_id)
        .group_by(InventoryLedgerEntry.store_id, InventoryLedgerEntry.variant_id)
    )
    levels_q = db.session.query(StockLevel).filter(StockLevel.tenant_id == tenant_id)
    if store_id is not None:
        sums_q = sums_q.filter(InventoryLedgerEntry.store_id == store_id)
        levels_q = levels_q.filter(StockLevel.store_id == store_id)

    ledger = {(s, v): round_qty(total) for s, v, total in sums_q.all()}
    cached = {(lvl.store_id, lvl.variant_id): round_qty(lvl.qty_on_hand) for lvl in levels_q.all()}

    drift = []
    for key in sorted(set(ledger) | set(cached)):
        expected = ledger.get(key, round_qty(ZERO))
        actual = cached.get(key, round_qty(ZERO))
        if expected != actual:
            drift.append({
                "store_id": key[0],
                "variant_id": key[1],
                "qty_on_hand": str(actual),
                "ledger_sum": str(expected),
                "difference": str(actual - expected),
            })
    if drift:
        current_app.logger.warning("Stock balance drift detected for tenant %s: %s keys", tenant_id, len(drift))
    return drift
