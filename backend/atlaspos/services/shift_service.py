# Overview: Register shifts; open/close, cash movements, order attachment and cash reconciliation.

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..context import ActingContext
from ..errors import ConsistencyError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashMovement, Order, Register, Shift
from ..money import ZERO, round_money, to_decimal
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, write_transaction
"""
Shift invariants (authoritative)

- At most one open shift (closed_at IS NULL) per register. Enforced by a
  locked check on the register row AND the partial unique index.
- A closed shift is never reopened; no movement or order attaches to it.
- Cashiers act only on shifts they opened; managers and admins on any.
- An order belongs to at most one shift and one store, each set once.
- Reconciliation is recomputed from source rows on every report:
    expected_cash = opening_float + cash_in - cash_out + cash_sales - cash_refunds
    cash_over_short = closing_cash - expected_cash (None while open)
"""

CASH_IN = "cash_in"
CASH_OUT = "cash_out"
MOVEMENT_TYPES = (CASH_IN, CASH_OUT)


def _shift_query(ctx: ActingContext):
    tenant_id = ctx.require_tenant()
    q = db.session.query(Shift).filter(Shift.tenant_id == tenant_id)
    if ctx.store_id is not None:
        q = q.filter(Shift.store_id == ctx.store_id)
    return q


def _get_shift(ctx: ActingContext, shift_id: int, *, lock: bool = False) -> Shift:
    q = _shift_query(ctx).filter(Shift.id == shift_id)
    if lock:
        q = lock_for_update(q).populate_existing()
    shift = q.first()
    if shift is None:
        raise NotFoundError("Shift not found", field="shift")
    return shift


def ensure_cashier_owns_shift(ctx: ActingContext, shift: Shift) -> None:
    if ctx.is_cashier and shift.user_id != ctx.user_id:
        raise ValidationError("Cashiers can only operate their own shift.", field="shift")


def _ensure_open(shift: Shift) -> None:
    if not shift.is_open:
        raise ValidationError("Shift is already closed.", field="shift")


def open_register(ctx: ActingContext, register_id: int, opening_float=0, notes: str | None = None) -> Shift:
    """Open a shift on an active register for the acting user."""
    tenant_id = ctx.require_tenant()
    if ctx.user_id is None:
        raise ValidationError("User context is required to open a shift.", field="user")
    opening = round_money(max(to_decimal(opening_float, field="opening_float"), ZERO))

    def _op():
        with write_transaction():
            register = lock_for_update(
                db.session.query(Register).filter_by(id=register_id, tenant_id=tenant_id, is_active=True)
            ).first()
            if register is None:
                raise NotFoundError("Register not found", field="register")
            if not register.store_id:
                raise ValidationError("Register is not assigned to a store.", field="register")
            if ctx.store_id is not None and register.store_id != ctx.store_id:
                raise ValidationError("Register belongs to a different store.", field="register")

            existing = (
                db.session.query(Shift.id)
                .filter(Shift.register_id == register.id, Shift.closed_at.is_(None))
                .first()
            )
            if existing is not None:
                raise ConsistencyError(
                    "Register already has an open shift.",
                    field="register",
                    details={"shift_id": existing[0]},
                )

            shift = Shift(
                tenant_id=tenant_id,
                store_id=register.store_id,
                register_id=register.id,
                user_id=ctx.user_id,
                opened_at=utcnow(),
                opening_float=opening,
                notes=notes,
            )
            db.session.add(shift)
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise ConsistencyError("Register already has an open shift.", field="register") from exc
        return shift

    shift = run_with_retry(_op)
    current_app.logger.info(
        "Shift %s opened on register %s by user %s (float %s)",
        shift.id, register_id, ctx.user_id, opening,
    )
    return shift


def close_register(ctx: ActingContext, shift_id: int, closing_cash=0, notes: str | None = None) -> dict:
    """Close a shift with the counted drawer cash; returns the final report."""
    closing = round_money(max(to_decimal(closing_cash, field="closing_cash"), ZERO))

    def _op():
        with write_transaction():
            shift = _get_shift(ctx, shift_id, lock=True)
            ensure_cashier_owns_shift(ctx, shift)
            _ensure_open(shift)
            shift.closed_at = utcnow()
            shift.closing_cash = closing
            if notes:
                shift.notes = notes
            db.session.flush()
        return shift.id

    closed_id = run_with_retry(_op)
    report = build_report(ctx, closed_id)
    current_app.logger.info(
        "Shift %s closed: expected=%s counted=%s over_short=%s",
        closed_id, report["expected_cash"], report["closing_cash"], report["cash_over_short"],
    )
    return report


def move_cash(ctx: ActingContext, shift_id: int, movement_type: str, amount, reason: str | None = None) -> CashMovement:
    """Record a cash_in or cash_out on an open shift."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError("Cash movement type must be cash_in or cash_out.", field="type")
    amount = round_money(amount, field="amount")
    if amount <= 0:
        raise ValidationError("Cash movement amount must be greater than zero.", field="amount")

    def _op():
        with write_transaction():
            shift = _get_shift(ctx, shift_id, lock=True)
            ensure_cashier_owns_shift(ctx, shift)
            _ensure_open(shift)
            movement = CashMovement(
                tenant_id=shift.tenant_id,
                shift_id=shift.id,
                type=movement_type,
                amount=amount,
                reason=reason,
                created_by=ctx.user_id,
            )
            db.session.add(movement)
            db.session.flush()
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info("Cash movement on shift %s: %s %s", shift_id, movement_type, amount)
    return movement


def attach_order(ctx: ActingContext, order_id: int, shift_id: int) -> Order:
    """
    Link an order to an open shift.

    The order inherits the shift's store when it has none. An order already
    in another store or shift is refused.
    """
    tenant_id = ctx.require_tenant()

    def _op():
        with write_transaction():
            shift = _get_shift(ctx, shift_id, lock=True)
            ensure_cashier_owns_shift(ctx, shift)
            _ensure_open(shift)

            order = lock_for_update(
                db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id)
            ).populate_existing().first()
            if order is None:
                raise NotFoundError("Order not found", field="order")
            if order.store_id is not None and order.store_id != shift.store_id:
                raise ConsistencyError("Order belongs to a different store than the shift.", field="order")
            if order.shift_id is not None and order.shift_id != shift.id:
                raise ConsistencyError("Order is already attached to another shift.", field="order")

            if order.store_id is None:
                order.store_id = shift.store_id
            if order.shift_id is None:
                order.shift_id = shift.id
            db.session.flush()
        return order

    return run_with_retry(_op)


def summarize_payments(orders: Iterable[Order]) -> dict:
    """
    Sales and refund figures for a set of orders.

    Paid orders count as sales and refunded orders as refunds. Cash amounts
    come from cash payment rows, falling back to the order total for any
    order without one.
    """
    sales_count = 0
    gross = ZERO
    refunds = ZERO
    cash_sales = ZERO
    cash_refunds = ZERO

    for order in orders:
        if order.status not in ("paid", "refunded"):
            continue
        total = to_decimal(order.total)
        cash_paid = sum(
            (to_decimal(p.amount) for p in order.payments if p.method == "cash" and p.status == "captured"),
            ZERO,
        )
        cash_amount = cash_paid if cash_paid > 0 else total

        if order.status == "paid":
            sales_count += 1
            gross += total
            cash_sales += cash_amount
        else:
            refunds += total
            cash_refunds += cash_amount

    return {
        "sales_count": sales_count,
        "gross_sales": round_money(gross),
        "refund_total": round_money(refunds),
        "cash_sales": round_money(cash_sales),
        "cash_refunds": round_money(cash_refunds),
    }


def _movement_totals(shift_id: int) -> tuple[Decimal, Decimal]:
    rows = (
        db.session.query(CashMovement.type, func.coalesce(func.sum(CashMovement.amount), 0))
        .filter(CashMovement.shift_id == shift_id)
        .group_by(CashMovement.type)
        .all()
    )
    totals = {kind: to_decimal(total) for kind, total in rows}
    return round_money(totals.get(CASH_IN, ZERO)), round_money(totals.get(CASH_OUT, ZERO))


def build_report(ctx: ActingContext, shift_id: int) -> dict:
    """Reconciliation report for a shift, rebuilt from orders, payments and movements."""
    shift = _get_shift(ctx, shift_id)
    orders = (
        db.session.query(Order)
        .options(selectinload(Order.payments))
        .filter(
            Order.tenant_id == shift.tenant_id,
            Order.store_id == shift.store_id,
            Order.shift_id == shift.id,
        )
        .order_by(Order.id.asc())
        .all()
    )
    summary = summarize_payments(orders)
    cash_in, cash_out = _movement_totals(shift.id)

    opening = round_money(shift.opening_float)
    expected = round_money(opening + cash_in - cash_out + summary["cash_sales"] - summary["cash_refunds"])
    closing = round_money(shift.closing_cash) if shift.closing_cash is not None else None

    return {
        "shift": shift.to_dict(),
        "shift_id": shift.id,
        "is_open": shift.is_open,
        "sales_count": summary["sales_count"],
        "gross_sales": summary["gross_sales"],
        "refund_total": summary["refund_total"],
        "net": round_money(summary["gross_sales"] - summary["refund_total"]),
        "cash_sales": summary["cash_sales"],
        "cash_refunds": summary["cash_refunds"],
        "cash_in": cash_in,
        "cash_out": cash_out,
        "opening_float": opening,
        "closing_cash": closing,
        "expected_cash": expected,
        "cash_over_short": round_money(closing - expected) if closing is not None else None,
    }


get_report = build_report


def get_current_shift(ctx: ActingContext) -> dict | None:
    """Report for the acting user's open shift, or None."""
    if ctx.user_id is None:
        raise ValidationError("User context is required.", field="user")
    shift = (
        _shift_query(ctx)
        .filter(Shift.user_id == ctx.user_id, Shift.closed_at.is_(None))
        .order_by(Shift.opened_at.desc(), Shift.id.desc())
        .first()
    )
    if shift is None:
        return None
    return build_report(ctx, shift.id)


def list_shifts(
    ctx: ActingContext,
    *,
    register_id: int | None = None,
    user_id: int | None = None,
    limit: int = 20,
) -> list[dict]:
    """Most recent shifts with their reports. Cashiers only see their own store."""
    if ctx.is_cashier and ctx.store_id is None:
        raise ValidationError("Store context is required.", field="store")
    q = _shift_query(ctx)
    if register_id is not None:
        q = q.filter(Shift.register_id == register_id)
    if user_id is not None:
        q = q.filter(Shift.user_id == user_id)
    limit = max(1, min(int(limit), 100))
    rows = q.order_by(Shift.opened_at.desc(), Shift.id.desc()).limit(limit).all()
    return [build_report(ctx, shift.id) for shift in rows]
