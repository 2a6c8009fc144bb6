# Overview: Pytest coverage for order pricing (promotions, discounts, taxes).

"""
Pricing rules are pure functions over PricingLine values, so most of these
tests build lines and promotions in memory. The promotion-window query is
the only part that needs the database.
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from atlaspos.models import Promotion
from atlaspos.services.pricing_service import (
    PricingLine, best_promotion, load_active_promotions, price_order,
    promotion_applies, promotion_discount,
)
from atlaspos.time_utils import utcnow

D = Decimal


def promo(name, type, value, applies_to="all", product_id=None, category_id=None):
    return SimpleNamespace(
        name=name, type=type, value=D(value), applies_to=applies_to,
        product_id=product_id, category_id=category_id,
    )


def tax(id, rate, inclusive, is_active=True, name=None):
    return SimpleNamespace(id=id, name=name or f"Tax {id}", rate=D(rate), inclusive=inclusive, is_active=is_active)


def line(qty="2", unit_price="10.00", deltas=("1.50",), product_id=1, category_ids=(), taxes=()):
    return PricingLine(
        product_id=product_id,
        qty=D(qty),
        unit_price=D(unit_price),
        option_deltas=tuple(D(d) for d in deltas),
        category_ids=tuple(category_ids),
        taxes=tuple(taxes),
    )


class TestScenarios:
    def test_inclusive_tax_is_embedded_in_total(self):
        """qty 2 x (10.00 + 1.50), 10% product promo, 10% inclusive tax."""
        pricing = price_order(
            [line(taxes=[tax(1, "10", inclusive=True)])],
            [promo("Ten off", "percent", "10", applies_to="product", product_id=1)],
        )
        assert pricing.subtotal == D("23.00")
        assert pricing.promotion_discount == D("2.30")
        assert pricing.discount == D("2.30")
        assert pricing.inclusive_tax_total == D("1.88")
        assert pricing.exclusive_tax_total == D("0.00")
        assert pricing.tax == D("1.88")
        assert pricing.total == D("20.70")
        assert pricing.promotion_breakdown == ["Ten off"]
        assert pricing.tax_breakdown == [
            {"id": 1, "name": "Tax 1", "inclusive": True, "amount": D("1.88")},
        ]

    def test_exclusive_tax_is_added_on_top(self):
        pricing = price_order(
            [line(taxes=[tax(2, "8", inclusive=False)])],
            [promo("Ten off", "percent", "10", applies_to="product", product_id=1)],
        )
        assert pricing.exclusive_tax_total == D("1.66")
        assert pricing.tax == D("1.66")
        assert pricing.total == D("22.36")


class TestPromotions:
    def test_amount_promotion_scales_with_quantity(self):
        amount = promotion_discount(promo("Two off", "amount", "3"), D("20"), D("2"))
        assert amount == D("6")

    def test_amount_promotion_capped_at_line_subtotal(self):
        amount = promotion_discount(promo("Huge", "amount", "15"), D("20"), D("2"))
        assert amount == D("20")

    def test_percent_promotion_capped_at_hundred(self):
        amount = promotion_discount(promo("All", "percent", "150"), D("20"), D("2"))
        assert amount == D("20")

    def test_negative_value_gives_nothing(self):
        assert promotion_discount(promo("Odd", "amount", "-5"), D("20"), D("1")) == 0

    def test_fractional_quantity_uses_at_least_one_unit(self):
        amount = promotion_discount(promo("One off", "amount", "1"), D("5"), D("0.5"))
        assert amount == D("1")

    def test_largest_discount_wins(self):
        promotions = [promo("Ten percent", "percent", "10"), promo("Two per unit", "amount", "2")]
        amount, best = best_promotion(promotions, line(deltas=()))
        assert best.name == "Two per unit"
        assert amount == D("4")

    def test_tie_keeps_first_evaluated(self):
        promotions = [promo("First", "percent", "10"), promo("Second", "percent", "10")]
        pricing = price_order([line()], promotions)
        assert pricing.promotion_breakdown == ["First"]
        assert pricing.promotion_discount == D("2.30")

    def test_only_one_promotion_per_line(self):
        promotions = [promo("A", "percent", "10"), promo("B", "amount", "1")]
        pricing = price_order([line(deltas=())], promotions)
        # 10% of 20.00 is 2.00, same as 1.00 x 2 units; first one stays
        assert pricing.promotion_discount == D("2.00")
        assert pricing.promotion_breakdown == ["A"]

    def test_scope_matching(self):
        by_product = promo("P", "percent", "10", applies_to="product", product_id=7)
        by_category = promo("C", "percent", "10", applies_to="category", category_id=3)
        assert promotion_applies(by_product, 7, ())
        assert not promotion_applies(by_product, 8, ())
        assert promotion_applies(by_category, 1, (3, 4))
        assert not promotion_applies(by_category, 1, (4,))
        assert not promotion_applies(promo("X", "percent", "10", applies_to="brand"), 1, ())

    def test_breakdown_lists_each_name_once(self):
        promotions = [promo("Everything", "percent", "5")]
        pricing = price_order([line(product_id=1), line(product_id=2)], promotions)
        assert pricing.promotion_breakdown == ["Everything"]


class TestTotals:
    def test_manual_discount_clamped_to_subtotal(self):
        pricing = price_order([line(deltas=())], [], manual_discount=D("50"))
        assert pricing.subtotal == D("20.00")
        assert pricing.discount == D("20.00")
        assert pricing.total == D("0.00")

    def test_negative_manual_discount_ignored(self):
        pricing = price_order([line(deltas=())], [], manual_discount=D("-5"))
        assert pricing.manual_discount == D("0.00")
        assert pricing.total == D("20.00")

    def test_inactive_and_zero_rate_taxes_skipped(self):
        taxes = [tax(1, "10", False, is_active=False), tax(2, "0", False), tax(3, "5", False)]
        pricing = price_order([line(deltas=(), taxes=taxes)], [])
        assert [row["id"] for row in pricing.tax_breakdown] == [3]
        assert pricing.tax == D("1.00")
        assert pricing.total == D("21.00")

    def test_negative_line_clamped_to_zero(self):
        pricing = price_order([line(qty="1", unit_price="1.00", deltas=("-5.00",))], [])
        assert pricing.subtotal == D("0.00")
        assert pricing.total == D("0.00")

    def test_tax_rounded_once_across_lines(self):
        """Three lines of 0.05 exclusive tax at 10%: 0.015 rounds to 0.02 in total, not per line."""
        taxes = [tax(1, "10", False)]
        lines = [line(qty="1", unit_price="0.05", deltas=(), taxes=taxes) for _ in range(3)]
        pricing = price_order(lines, [])
        assert pricing.exclusive_tax_total == D("0.02")
        assert pricing.tax_breakdown[0]["amount"] == D("0.02")

    def test_empty_order(self):
        pricing = price_order([], [])
        assert pricing.total == D("0.00")
        assert pricing.tax_breakdown == []
        assert pricing.to_dict()["total"] == "0.00"


class TestActivePromotions:
    def test_window_and_active_flag(self, db_session, tenant_a, tenant_b):
        now = utcnow()
        db_session.add_all([
            Promotion(tenant_id=tenant_a.id, name="Open", type="percent", value=D("5")),
            Promotion(tenant_id=tenant_a.id, name="Running", type="percent", value=D("5"),
                      starts_at=now - timedelta(days=1), ends_at=now + timedelta(days=1)),
            Promotion(tenant_id=tenant_a.id, name="Future", type="percent", value=D("5"),
                      starts_at=now + timedelta(days=1)),
            Promotion(tenant_id=tenant_a.id, name="Expired", type="percent", value=D("5"),
                      ends_at=now - timedelta(days=1)),
            Promotion(tenant_id=tenant_a.id, name="Disabled", type="percent", value=D("5"), is_active=False),
            Promotion(tenant_id=tenant_b.id, name="Other tenant", type="percent", value=D("5")),
        ])
        db_session.commit()

        names = [p.name for p in load_active_promotions(tenant_a.id, now=now)]
        assert names == ["Open", "Running"]


@pytest.mark.parametrize("qty,price,expected", [
    ("1", "9.99", D("9.99")),
    ("3", "0.333", D("1.00")),
    ("1.5", "2.00", D("3.00")),
])
def test_subtotal_rounding(qty, price, expected):
    pricing = price_order([line(qty=qty, unit_price=price, deltas=())], [])
    assert pricing.subtotal == expected
