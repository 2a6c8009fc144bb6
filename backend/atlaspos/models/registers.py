from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..money import to_decimal
from ..time_utils import to_utc_z
from .inventory import refuse_rewrite


class Shift(db.Model):
    """
    Cashier shift on a register (open-to-close session).

    LIFECYCLE:
    - open: closed_at IS NULL, cash movements and orders may attach
    - closed: closed_at and closing_cash set; never reopened

    At most one open shift per register, enforced by the partial unique
    index below in addition to the locked check in shift_service.
    Reconciliation figures are never stored here; they are rebuilt from
    orders, payments and cash movements every time a report is requested.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_register_open",
            "register_id",
            unique=True,
            sqlite_where=db.text("closed_at IS NULL"),
            postgresql_where=db.text("closed_at IS NULL"),
        ),
        db.Index("ix_shifts_tenant_store_opened", "tenant_id", "store_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    opening_float = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    closing_cash = db.Column(db.Numeric(12, 2), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    register = db.relationship("Register", backref=db.backref("shifts", lazy=True))
    user = db.relationship("User", backref=db.backref("shifts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "register_id": self.register_id,
            "user_id": self.user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "opening_float": str(to_decimal(self.opening_float)),
            "closing_cash": str(to_decimal(self.closing_cash)) if self.closing_cash is not None else None,
            "notes": self.notes,
        }


class CashMovement(db.Model):
    """
    Cash put into (cash_in) or taken out of (cash_out) the drawer mid-shift.

    IMMUTABLE: append-only; no running balance is kept anywhere.
    """
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # cash_in, cash_out
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("Shift", backref=db.backref("cash_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "type": self.type,
            "amount": str(to_decimal(self.amount)),
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


event.listen(CashMovement, "before_update", refuse_rewrite)
event.listen(CashMovement, "before_delete", refuse_rewrite)
