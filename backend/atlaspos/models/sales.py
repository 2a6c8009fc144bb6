from __future__ import annotations

from ..extensions import db
from ..money import to_decimal
from ..time_utils import to_utc_z


def _money(value) -> str:
    return str(to_decimal(value))


class Order(db.Model):
    """
    Order document: draft -> paid -> refunded.

    - draft: items may be added, merged or replaced; totals are recalculated
      after every mutation.
    - paid: payment captured and stock decremented exactly once.
    - refunded: terminal; stock restored, no further mutation.

    Totals (subtotal, discount, tax, total) are derived by recalculation and
    persisted. The per-tax / per-promotion breakdown is attached to the
    instance as `pricing` and is never stored.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_tenant_store_status", "tenant_id", "store_id", "status"),
        db.Index("ix_orders_shift", "shift_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="draft")  # draft, paid, refunded

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    manual_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    refunded_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem", back_populates="order", lazy=True,
        cascade="all, delete-orphan", order_by="OrderItem.id",
    )
    payments = db.relationship("Payment", back_populates="order", lazy=True, order_by="Payment.id")
    refunds = db.relationship("Refund", back_populates="order", lazy=True, order_by="Refund.id")
    customer_link = db.relationship("CustomerOrder", back_populates="order", uselist=False, lazy=True)
    shift = db.relationship("Shift", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    # Auxiliary pricing output of the last recalculation (not a column).
    pricing = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "shift_id": self.shift_id,
            "status": self.status,
            "subtotal": _money(self.subtotal),
            "discount": _money(self.discount),
            "manual_discount": _money(self.manual_discount),
            "tax": _money(self.tax),
            "total": _money(self.total),
            "refunded_total": _money(self.refunded_total),
            "payment_method": self.payment_method,
            "customer_id": self.customer_link.customer_id if self.customer_link else None,
            "items": [item.to_dict() for item in self.items],
            "payments": [payment.to_dict() for payment in self.payments],
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if self.pricing is not None:
            data.update(self.pricing.to_dict())
        return data


class OrderItem(db.Model):
    """
    Order line. unit_price and cogs_amount are snapshots taken when the line
    is written; later catalog price or cost changes do not touch them.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    qty = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    cogs_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    note = db.Column(db.String(500), nullable=True)

    order = db.relationship("Order", back_populates="items")
    variant = db.relationship("Variant")
    options = db.relationship(
        "OrderItemOption", back_populates="item", lazy=True,
        cascade="all, delete-orphan", order_by="OrderItemOption.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "product_id": self.product_id,
            "qty": str(to_decimal(self.qty)),
            "unit_price": _money(self.unit_price),
            "cogs_amount": _money(self.cogs_amount),
            "note": self.note,
            "options": [opt.to_dict() for opt in self.options],
        }


class OrderItemOption(db.Model):
    """Selected modifier on an order line, with its price_delta snapshot."""
    __tablename__ = "order_item_options"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    option_id = db.Column(db.Integer, db.ForeignKey("options.id"), nullable=False)
    price_delta = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    item = db.relationship("OrderItem", back_populates="options")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "option_id": self.option_id,
            "price_delta": _money(self.price_delta),
        }


class Payment(db.Model):
    """Captured payment for an order. One row per successful capture."""
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)  # cash, card
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="captured")
    captured_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "amount": _money(self.amount),
            "status": self.status,
            "captured_at": to_utc_z(self.captured_at),
        }


class Refund(db.Model):
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    data = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="refunds")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount": _money(self.amount),
            "reason": self.reason,
            "data": self.data,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerOrder(db.Model):
    """Order <-> customer association. At most one customer per order."""
    __tablename__ = "customer_orders"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_customer_orders_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="customer_link")
    customer = db.relationship("Customer", backref=db.backref("order_links", lazy=True))
