# Overview: Order pricing; promotions, manual discount and inclusive/exclusive taxes.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import or_

from ..extensions import db
from ..models import Promotion
from ..money import HUNDRED, ZERO, round_money, to_decimal
from ..time_utils import utcnow
"""
Pricing rules (authoritative)

Per line:
- line_subtotal = max(qty * (unit_price + sum(option deltas)), 0)
- at most ONE promotion applies: the one with the largest discount; ties
  keep the first evaluated (promotions are evaluated in creation order)
- percent: line_subtotal * min(value, 100) / 100
- amount:  min(line_subtotal, value * max(qty, 1))
- discounted_base = max(line_subtotal - promotion, 0)
- each active tax with rate > 0 on the line:
    inclusive: discounted_base * rate / (100 + rate)  (already in the price)
    exclusive: discounted_base * rate / 100           (added on top)

Per order (rounding to cents happens here and nowhere else):
- discount = min(round(manual + promotions), subtotal)
- tax      = round(exclusive + inclusive)
- total    = round(max(subtotal - discount + exclusive, 0))
"""

PROMO_PERCENT = "percent"
PROMO_AMOUNT = "amount"


@dataclass(frozen=True)
class PricingLine:
    """Everything pricing needs to know about one order line."""

    product_id: int
    qty: Decimal
    unit_price: Decimal
    option_deltas: tuple = ()
    category_ids: tuple = ()
    taxes: tuple = ()  # Tax rows, or anything with id/name/rate/inclusive/is_active

    @property
    def subtotal(self) -> Decimal:
        unit = to_decimal(self.unit_price) + sum((to_decimal(d) for d in self.option_deltas), ZERO)
        return max(to_decimal(self.qty) * unit, ZERO)


@dataclass
class OrderPricing:
    subtotal: Decimal = ZERO
    promotion_discount: Decimal = ZERO
    manual_discount: Decimal = ZERO
    discount: Decimal = ZERO
    exclusive_tax_total: Decimal = ZERO
    inclusive_tax_total: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    tax_breakdown: list = field(default_factory=list)
    promotion_breakdown: list = field(default_factory=list)
    # Filled in by capture when a customer is attached.
    points_earned: int = 0
    loyalty_points_total: int | None = None

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "promotion_discount": str(self.promotion_discount),
            "manual_discount": str(self.manual_discount),
            "discount": str(self.discount),
            "exclusive_tax_total": str(self.exclusive_tax_total),
            "inclusive_tax_total": str(self.inclusive_tax_total),
            "tax": str(self.tax),
            "total": str(self.total),
            "tax_breakdown": [dict(row, amount=str(row["amount"])) for row in self.tax_breakdown],
            "promotion_breakdown": list(self.promotion_breakdown),
            "points_earned": self.points_earned,
            "loyalty_points_total": self.loyalty_points_total,
        }


def load_active_promotions(tenant_id: int, now: datetime | None = None) -> list[Promotion]:
    """Active promotions whose window contains `now`, in creation order."""
    now = now or utcnow()
    return (
        db.session.query(Promotion)
        .filter(
            Promotion.tenant_id == tenant_id,
            Promotion.is_active.is_(True),
            or_(Promotion.starts_at.is_(None), Promotion.starts_at <= now),
            or_(Promotion.ends_at.is_(None), Promotion.ends_at >= now),
        )
        .order_by(Promotion.id.asc())
        .all()
    )


def promotion_applies(promotion, product_id: int, category_ids: Iterable[int]) -> bool:
    scope = promotion.applies_to or "all"
    if scope == "all":
        return True
    if scope == "product":
        return promotion.product_id is not None and promotion.product_id == product_id
    if scope == "category":
        return promotion.category_id is not None and promotion.category_id in set(category_ids)
    return False


def promotion_discount(promotion, line_subtotal: Decimal, qty: Decimal) -> Decimal:
    """Unrounded discount a promotion gives on one line; never more than the line."""
    if line_subtotal <= 0:
        return ZERO
    value = max(to_decimal(promotion.value), ZERO)
    if promotion.type == PROMO_PERCENT:
        return line_subtotal * min(value, HUNDRED) / HUNDRED
    if promotion.type == PROMO_AMOUNT:
        return min(line_subtotal, value * max(to_decimal(qty), Decimal(1)))
    return ZERO


def best_promotion(promotions: Sequence, line: PricingLine) -> tuple[Decimal, object | None]:
    """The single best promotion for a line and its discount (0, None when nothing applies)."""
    line_subtotal = line.subtotal
    best_amount = ZERO
    best = None
    for promotion in promotions:
        if not promotion_applies(promotion, line.product_id, line.category_ids):
            continue
        amount = promotion_discount(promotion, line_subtotal, line.qty)
        if amount > best_amount:
            best_amount = amount
            best = promotion
    return best_amount, best


def line_taxes(taxes: Iterable, base: Decimal) -> list[tuple[object, Decimal]]:
    """(tax, unrounded amount) for every active tax with a positive rate."""
    result = []
    for tax in taxes:
        if not tax.is_active:
            continue
        rate = to_decimal(tax.rate)
        if rate <= 0:
            continue
        if tax.inclusive:
            amount = base * rate / (HUNDRED + rate)
        else:
            amount = base * rate / HUNDRED
        result.append((tax, amount))
    return result


def price_order(lines: Sequence[PricingLine], promotions: Sequence, manual_discount=ZERO) -> OrderPricing:
    """Price a set of lines. Pure: reads nothing from the database."""
    manual = max(to_decimal(manual_discount), ZERO)

    subtotal = ZERO
    promo_total = ZERO
    exclusive = ZERO
    inclusive = ZERO
    breakdown: dict = {}
    promo_names: list[str] = []

    for line in lines:
        line_subtotal = line.subtotal
        subtotal += line_subtotal

        amount, promotion = best_promotion(promotions, line)
        if promotion is not None:
            promo_total += amount
            if promotion.name not in promo_names:
                promo_names.append(promotion.name)

        base = max(line_subtotal - amount, ZERO)
        for tax, tax_amount in line_taxes(line.taxes, base):
            if tax.inclusive:
                inclusive += tax_amount
            else:
                exclusive += tax_amount
            row = breakdown.setdefault(tax.id, {
                "id": tax.id,
                "name": tax.name,
                "inclusive": bool(tax.inclusive),
                "amount": ZERO,
            })
            row["amount"] += tax_amount

    subtotal = round_money(subtotal)
    promo_total = round_money(promo_total)
    discount = min(round_money(manual + promo_total), subtotal)
    exclusive_total = round_money(exclusive)
    inclusive_total = round_money(inclusive)

    return OrderPricing(
        subtotal=subtotal,
        promotion_discount=promo_total,
        manual_discount=round_money(manual),
        discount=discount,
        exclusive_tax_total=exclusive_total,
        inclusive_tax_total=inclusive_total,
        tax=round_money(exclusive + inclusive),
        total=round_money(max(subtotal - discount + exclusive, ZERO)),
        tax_breakdown=[dict(row, amount=round_money(row["amount"])) for row in breakdown.values()],
        promotion_breakdown=promo_names,
    )
