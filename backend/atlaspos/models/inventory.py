from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..money import to_decimal
from ..time_utils import to_utc_z
"""
Inventory invariants (authoritative)

- InventoryLedgerEntry is append-only: rows are inserted, never updated or deleted.
- StockLevel is a cached projection of the ledger, unique per (tenant, store, variant).
- qty_on_hand == SUM(qty_delta) over the ledger for the same key, because every
  ledger insert and its balance update are written in the same DB transaction.
"""


class StockLevel(db.Model):
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "store_id", "variant_id", name="uq_stock_levels_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    qty_on_hand = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "variant_id": self.variant_id,
            "qty_on_hand": str(to_decimal(self.qty_on_hand)),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLedgerEntry(db.Model):
    """
    Append-only history of stock changes.

    IMMUTABLE: Records are never updated or deleted. Corrections are new
    entries with the opposite delta.
    """
    __tablename__ = "inventory_ledger"
    __table_args__ = (
        db.Index("ix_inventory_ledger_key", "tenant_id", "store_id", "variant_id"),
        db.Index("ix_inventory_ledger_ref", "ref_type", "ref_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)

    qty_delta = db.Column(db.Numeric(12, 3), nullable=False)
    reason = db.Column(db.String(32), nullable=False)  # sale, refund, receive, adjustment, ...
    ref_type = db.Column(db.String(32), nullable=True)
    ref_id = db.Column(db.String(64), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "variant_id": self.variant_id,
            "qty_delta": str(to_decimal(self.qty_delta)),
            "reason": self.reason,
            "ref_type": self.ref_type,
            "ref_id": self.ref_id,
            "user_id": self.user_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to rewrite an append-only row."""


def refuse_rewrite(mapper, connection, target):
    raise AppendOnlyViolation(
        f"{type(target).__name__} rows are append-only and cannot be updated or deleted"
    )


event.listen(InventoryLedgerEntry, "before_update", refuse_rewrite)
event.listen(InventoryLedgerEntry, "before_delete", refuse_rewrite)
