# Overview: Order lifecycle; drafts, line items, totals, capture and refund.

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm import selectinload

from ..context import ActingContext, ROLE_CASHIER
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Customer, CustomerOrder, OptionGroup, Order, OrderItem, OrderItemOption,
    Payment, Product, Refund, Variant,
)
from ..money import ZERO, round_money, round_qty, to_decimal
from ..time_utils import utcnow
from . import stock_service
from .concurrency import lock_for_update, run_with_retry, write_transaction
from .pricing_service import OrderPricing, PricingLine, load_active_promotions, price_order
from .repository import TenantRepository
from .tenant_service import get_acting_user, require_store_in_tenant, resolve_store_id
"""
Order invariants (authoritative)

- Every mutation runs under a row lock on the order and ends with a
  recalculation, so persisted totals always match the persisted lines.
- Stock leaves the store exactly once per order (capture) and comes back
  exactly once (refund). Capturing a paid order is a no-op.
- refunded is terminal.
- unit_price and cogs_amount are snapshots taken when a line is written.
"""

STATUS_DRAFT = "draft"
STATUS_PAID = "paid"
STATUS_REFUNDED = "refunded"

# Full aggregate needed by pricing, capture and refund; selectin avoids
# outer joins, which some databases refuse to combine with FOR UPDATE.
_ITEM_PRODUCT = selectinload(Order.items).selectinload(OrderItem.variant).selectinload(Variant.product)
ORDER_AGGREGATE = (
    selectinload(Order.items).selectinload(OrderItem.options),
    _ITEM_PRODUCT.selectinload(Product.categories),
    _ITEM_PRODUCT.selectinload(Product.taxes),
    selectinload(Order.payments),
    selectinload(Order.customer_link),
)

orders = TenantRepository(Order, store_scoped=True, label="Order")
customers = TenantRepository(Customer, label="Customer")


@dataclass(frozen=True)
class LineItemInput:
    """One requested line for sync_line_items."""

    product_id: int
    qty: Decimal
    selected_options: tuple = ()
    note: str | None = None
    variant_id: int | None = None

    @classmethod
    def from_dict(cls, payload: dict, index: int = 0) -> "LineItemInput":
        prefix = f"line_items.{index}"
        if payload.get("product_id") in (None, ""):
            raise ValidationError("Product is required for every line.", field=f"{prefix}.product_id")
        variant_id = payload.get("variant_id")
        return cls(
            product_id=_to_id(payload["product_id"], f"{prefix}.product_id"),
            qty=to_decimal(payload.get("qty", 0), field=f"{prefix}.qty"),
            selected_options=tuple(
                _to_id(raw, f"{prefix}.selected_options")
                for raw in (payload.get("selected_options") or ())
                if raw not in (None, "")
            ),
            note=payload.get("note"),
            variant_id=_to_id(variant_id, f"{prefix}.variant_id") if variant_id not in (None, "") else None,
        )


def _to_id(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{value!r} is not a valid id.", field=field) from exc


def snapshot_cogs(variant: Variant, qty) -> Decimal:
    """Cost of goods for a line: unit cost x qty, both clamped at zero."""
    cost = max(to_decimal(variant.cost), ZERO)
    return round_money(cost * max(to_decimal(qty), ZERO))


def _pricing_lines(order: Order) -> list[PricingLine]:
    lines = []
    for item in order.items:
        product = item.variant.product
        lines.append(PricingLine(
            product_id=item.product_id,
            qty=to_decimal(item.qty),
            unit_price=to_decimal(item.unit_price),
            option_deltas=tuple(to_decimal(opt.price_delta) for opt in item.options),
            category_ids=tuple(c.id for c in product.categories),
            taxes=tuple(product.taxes),
        ))
    return lines


def recalculate_order(order: Order, *, persist: bool = True) -> OrderPricing:
    """
    Reprice the order from its current lines.

    With persist=True the derived totals are written to the order (flushed,
    not committed). The breakdown is returned either way.
    """
    promotions = load_active_promotions(order.tenant_id)
    pricing = price_order(_pricing_lines(order), promotions, order.manual_discount)
    if persist:
        order.subtotal = pricing.subtotal
        order.manual_discount = pricing.manual_discount
        order.discount = pricing.discount
        order.tax = pricing.tax
        order.total = pricing.total
        db.session.flush()
    return pricing


def _finish(order: Order, pricing: OrderPricing) -> Order:
    order.pricing = pricing
    return order


def _locked_order(ctx: ActingContext, order_id: int) -> Order:
    return orders.lock_for_update(ctx, order_id, options=ORDER_AGGREGATE)


def _ensure_mutable(order: Order) -> None:
    if order.status == STATUS_REFUNDED:
        raise ValidationError("Refunded orders cannot be modified.", field="order")


def create_draft(ctx: ActingContext, store_id: int | None = None) -> Order:
    """Start an empty draft in the explicit store, the user's store, or the context store."""
    tenant_id = ctx.require_tenant()
    user = get_acting_user(ctx)

    store_id = resolve_store_id(ctx, store_id, user)
    role = user.role if user else ctx.role
    home_store = user.store_id if user else ctx.store_id
    if role == ROLE_CASHIER and home_store is not None and store_id != home_store:
        raise ValidationError("Cashiers can only create orders in their own store.", field="store")
    require_store_in_tenant(store_id, tenant_id)

    def _op():
        with write_transaction():
            order = Order(
                tenant_id=tenant_id,
                store_id=store_id,
                cashier_id=user.id if user else ctx.user_id,
                status=STATUS_DRAFT,
            )
            db.session.add(order)
            db.session.flush()
            pricing = recalculate_order(order)
        return _finish(order, pricing)

    order = run_with_retry(_op)
    current_app.logger.info("Draft order %s created in store %s", order.id, store_id)
    return order


def add_item(ctx: ActingContext, order_id: int, variant_id: int, qty=1) -> Order:
    """
    Add (or merge into) a line for a variant.

    A negative qty reduces an existing line; a line that drops to zero or
    below is removed. The stock check here is advisory: the authoritative
    check happens at capture.
    """
    qty = round_qty(qty, field="qty")

    def _op():
        with write_transaction():
            order = _locked_order(ctx, order_id)
            if order.status not in (STATUS_DRAFT, STATUS_PAID):
                raise ValidationError("Items can only be added to draft or paid orders.", field="order")
            if not order.store_id:
                raise ValidationError("Order has no store assigned.", field="store")

            variant = (
                db.session.query(Variant)
                .options(selectinload(Variant.product))
                .filter(Variant.id == variant_id)
                .first()
            )
            if variant is None or variant.product.tenant_id != order.tenant_id:
                raise NotFoundError("Variant not found", field="variant")

            item = next((line for line in order.items if line.variant_id == variant.id), None)
            existing_qty = to_decimal(item.qty) if item else ZERO

            if variant.track_stock and qty > 0:
                available = stock_service.get_on_hand(ctx, variant.id, order.store_id)
                if existing_qty + qty > available:
                    raise ValidationError(
                        "Insufficient stock in this store.",
                        field="qty",
                        details={
                            "variant_id": variant.id,
                            "requested": str(existing_qty + qty),
                            "available": str(available),
                        },
                    )

            if item is not None:
                new_qty = round_qty(existing_qty + qty)
                if new_qty <= 0:
                    order.items.remove(item)
                else:
                    item.qty = new_qty
                    item.unit_price = variant.price
                    item.cogs_amount = snapshot_cogs(variant, new_qty)
            else:
                if qty <= 0:
                    raise ValidationError("Quantity must be greater than zero.", field="qty")
                order.items.append(OrderItem(
                    tenant_id=order.tenant_id,
                    variant=variant,
                    product_id=variant.product_id,
                    qty=qty,
                    unit_price=variant.price,
                    cogs_amount=snapshot_cogs(variant, qty),
                ))

            db.session.flush()
            pricing = recalculate_order(order)
        return _finish(order, pricing)

    return run_with_retry(_op)


def _load_products(tenant_id: int, product_ids: list[int]) -> dict[int, Product]:
    rows = (
        db.session.query(Product)
        .options(
            selectinload(Product.variants),
            selectinload(Product.option_groups).selectinload(OptionGroup.options),
            selectinload(Product.categories),
            selectinload(Product.taxes),
        )
        .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
        .all()
    )
    return {p.id: p for p in rows}


def _resolve_line_variant(product: Product, variant_id: int | None) -> Variant:
    if variant_id is not None:
        for variant in product.variants:
            if variant.id == _to_id(variant_id, "variant_id"):
                return variant
    return product.ensure_default_variant()


def _select_options(product: Product, selected_ids, index: int) -> list:
    """Validate selected option ids against the product's active groups; returns Option rows."""
    groups = [g for g in product.option_groups if g.is_active]
    lookup = {}
    for group in groups:
        for option in group.options:
            if option.is_active:
                lookup[option.id] = (option, group)

    chosen = {}
    for raw_id in selected_ids:
        if raw_id in (None, ""):
            continue
        option_id = _to_id(raw_id, f"line_items.{index}.selected_options")
        if option_id not in lookup:
            raise ValidationError(
                "One or more selected modifiers are invalid.",
                field=f"line_items.{index}.selected_options",
            )
        chosen.setdefault(option_id, lookup[option_id])

    field = f"line_items.{index}.selected_options"
    for group in groups:
        count = sum(1 for _, g in chosen.values() if g.id == group.id)
        minimum = group.min or 0
        if group.selection_type == "single" and count > 1:
            raise ValidationError(f"Only one option may be selected for {group.name}.", field=field)
        if count < minimum:
            raise ValidationError(f"Select at least {minimum} option(s) for {group.name}.", field=field)
        if group.max is not None and count > group.max:
            raise ValidationError(f"Select no more than {group.max} option(s) for {group.name}.", field=field)

    return [option for option, _ in chosen.values()]


def sync_line_items(ctx: ActingContext, order: Order, line_items) -> None:
    """
    Replace every line of a locked order with `line_items`.

    All lines are validated and stock is checked per variant (quantities
    summed across lines) before anything is written. An empty list clears
    the order.
    """
    if order.status == STATUS_PAID:
        raise ValidationError("Cannot modify a paid order.", field="order")
    _ensure_mutable(order)

    inputs = [
        li if isinstance(li, LineItemInput) else LineItemInput.from_dict(li, index)
        for index, li in enumerate(line_items)
    ]
    if not inputs:
        order.items.clear()
        db.session.flush()
        return

    product_ids = list(dict.fromkeys(li.product_id for li in inputs))
    products = _load_products(order.tenant_id, product_ids)
    if len(products) != len(product_ids):
        raise NotFoundError("One or more products are invalid.", field="line_items")

    store_id = order.store_id or ctx.store_id
    if not store_id:
        raise ValidationError("Store context is required to capture an order.", field="store")

    prepared = []
    required: dict[int, Decimal] = {}
    for index, li in enumerate(inputs):
        product = products[li.product_id]
        if not product.is_active:
            raise ValidationError("Product is inactive.", field=f"line_items.{index}.product_id")
        qty = round_qty(li.qty)
        if qty <= 0:
            raise ValidationError("Quantity must be greater than zero.", field=f"line_items.{index}.qty")

        options = _select_options(product, li.selected_options, index)
        variant = _resolve_line_variant(product, li.variant_id)
        note = (li.note or "").strip() or None
        base_price = variant.price if variant.price is not None else product.price

        if product.track_stock and variant.track_stock:
            required[variant.id] = required.get(variant.id, ZERO) + qty
        prepared.append((product, variant, qty, base_price, note, options))

    shortages = []
    for vid, needed in required.items():
        available = stock_service.get_on_hand(ctx, vid, store_id)
        if needed > available:
            shortages.append({"variant_id": vid, "requested": str(needed), "available": str(available)})
    if shortages:
        raise ValidationError(
            "Insufficient stock for one or more items.",
            field="line_items",
            details={"items": shortages},
        )

    order.items.clear()
    db.session.flush()
    for product, variant, qty, base_price, note, options in prepared:
        item = OrderItem(
            tenant_id=order.tenant_id,
            variant=variant,
            product_id=product.id,
            qty=qty,
            unit_price=base_price,
            cogs_amount=snapshot_cogs(variant, qty),
            note=note,
        )
        for option in options:
            item.options.append(OrderItemOption(
                tenant_id=order.tenant_id,
                option_id=option.id,
                price_delta=option.price_delta,
            ))
        order.items.append(item)
    db.session.flush()


def calculate_totals(ctx: ActingContext, order_id: int) -> Order:
    """
    Reprice an order and return it with its breakdown.

    Only drafts have their totals rewritten; paid and refunded orders keep
    the totals they were captured with.
    """
    def _op():
        with write_transaction():
            order = _locked_order(ctx, order_id)
            pricing = recalculate_order(order, persist=order.status == STATUS_DRAFT)
        return _finish(order, pricing)

    return run_with_retry(_op)


# Read-side aliases used by checkout screens and lookups.
checkout = calculate_totals
find = calculate_totals


def apply_discount(ctx: ActingContext, order_id: int, amount) -> Order:
    amount = to_decimal(amount, field="amount")
    if amount < 0:
        raise ValidationError("Discount cannot be negative.", field="amount")

    def _op():
        with write_transaction():
            order = _locked_order(ctx, order_id)
            _ensure_mutable(order)
            order.manual_discount = round_money(amount)
            pricing = recalculate_order(order)
        return _finish(order, pricing)

    return run_with_retry(_op)


def set_customer(ctx: ActingContext, order_id: int, customer_id: int) -> Order:
    """Attach a customer, replacing any previous one."""
    def _op():
        with write_transaction():
            order = _locked_order(ctx, order_id)
            _ensure_mutable(order)
            customer = customers.find_by_id(ctx, customer_id)
            if order.customer_link is not None:
                order.customer_link.customer_id = customer.id
            else:
                order.customer_link = CustomerOrder(
                    tenant_id=order.tenant_id,
                    customer_id=customer.id,
                )
            db.session.flush()
            pricing = recalculate_order(order)
        return _finish(order, pricing)

    return run_with_retry(_op)


def _apply_inventory_delta(ctx: ActingContext, order: Order, direction: int, reason: str) -> None:
    """Move stock for every tracked line; direction -1 for sale, +1 for refund."""
    if not order.store_id:
        return
    for item in order.items:
        variant = item.variant
        if not (variant.track_stock and variant.product.track_stock):
            continue
        delta = to_decimal(item.qty) * direction
        if delta == 0:
            continue
        stock_service.adjust(
            ctx,
            variant.id,
            order.store_id,
            delta,
            reason,
            reference={"type": "order", "id": order.id},
            user_id=order.cashier_id,
            note=f"Order {order.id} {reason}",
            commit=False,
        )


def _award_loyalty_points(order: Order) -> tuple[int, int | None]:
    """Credit floor(total) points to the attached customer. Returns (earned, new balance)."""
    if not current_app.config.get("LOYALTY_POINTS_ENABLED", True):
        return 0, None
    link = order.customer_link
    if link is None:
        return 0, None
    customer = lock_for_update(
        db.session.query(Customer).filter_by(id=link.customer_id, tenant_id=order.tenant_id)
    ).populate_existing().first()
    if customer is None:
        return 0, None

    points = int(math.floor(to_decimal(order.total)))
    if points > 0:
        customer.loyalty_points = (customer.loyalty_points or 0) + points
    db.session.flush()
    return max(points, 0), customer.loyalty_points


def capture(ctx: ActingContext, order_id: int, method: str = "cash", line_items=None) -> Order:
    """
    Take payment for an order: payment row, stock decrement, status paid.

    Capturing an order that is already paid returns it unchanged.
    """
    allowed = tuple(current_app.config.get("ORDER_PAYMENT_METHODS", ("cash", "card")))
    if method not in allowed:
        raise ValidationError(
            f"Unsupported payment method '{method}'.",
            field="method",
            details={"allowed": list(allowed)},
        )

    def _op():
        with write_transaction():
            order = _locked_order(ctx, order_id)
            if order.status == STATUS_REFUNDED:
                raise ValidationError("Cannot capture a refunded order.", field="order")
            if order.status == STATUS_PAID:
                return order, recalculate_order(order, persist=False), False

            if line_items is not None:
                sync_line_items(ctx, order, line_items)
            pricing = recalculate_order(order)
            if not order.items:
                raise ValidationError("Cannot capture an order with no items.", field="order")

            db.session.add(Payment(
                tenant_id=order.tenant_id,
                order=order,
                method=method,
                amount=pricing.total,
                status="captured",
                captured_at=utcnow(),
            ))
            _apply_inventory_delta(ctx, order, -1, "sale")
            order.status = STATUS_PAID
            order.payment_method = method
            pricing.points_earned, pricing.loyalty_points_total = _award_loyalty_points(order)
            db.session.flush()
        return order, pricing, True

    order, pricing, captured = run_with_retry(_op)
    _finish(order, pricing)
    if captured:
        current_app.logger.info(
            "Order %s captured: method=%s total=%s", order.id, method, order.total,
        )
    else:
        current_app.logger.info("Order %s already paid; capture skipped", order.id)
    return order


def refund(ctx: ActingContext, order_id: int, reason: str = "Full order refund") -> Order:
    """Full refund of a paid order; stock for every tracked line goes back."""
    def _op():
        with write_transaction():
            order = _locked_order(ctx, order_id)
            if order.status != STATUS_PAID:
                raise ValidationError("Only paid orders can be refunded.", field="order")

            total = to_decimal(order.total)
            db.session.add(Refund(
                tenant_id=order.tenant_id,
                order=order,
                user_id=ctx.user_id,
                amount=total,
                reason=reason,
                data={"mode": "full"},
            ))
            order.refunded_total = total
            order.status = STATUS_REFUNDED
            _apply_inventory_delta(ctx, order, 1, "refund")
            db.session.flush()
            pricing = recalculate_order(order, persist=False)
        return _finish(order, pricing)

    order = run_with_retry(_op)
    current_app.logger.info("Order %s refunded: amount=%s", order.id, order.refunded_total)
    return order
