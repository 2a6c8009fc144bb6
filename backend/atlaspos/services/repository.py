"""
Tenant-scoped repository over the SQLAlchemy session.

Every lookup filters by the acting tenant (and, for store-owned rows, the
acting store when one is set). Rows outside that scope are reported exactly
like missing rows.

USAGE:
    orders = TenantRepository(Order, store_scoped=True, label="Order")
    order = orders.lock_for_update(ctx, order_id, options=ORDER_AGGREGATE)
"""

from __future__ import annotations

from ..context import ActingContext
from ..errors import NotFoundError
from ..extensions import db
from .concurrency import lock_for_update


class TenantRepository:
    def __init__(self, model, *, store_scoped: bool = False, label: str | None = None):
        self.model = model
        self.store_scoped = store_scoped
        self.label = label or model.__name__

    def query(self, ctx: ActingContext):
        tenant_id = ctx.require_tenant()
        q = db.session.query(self.model).filter(self.model.tenant_id == tenant_id)
        if self.store_scoped and ctx.store_id is not None:
            q = q.filter(self.model.store_id == ctx.store_id)
        return q

    def _get(self, ctx: ActingContext, entity_id, *, lock: bool, options=()):
        q = self.query(ctx).filter(self.model.id == entity_id)
        if options:
            q = q.options(*options)
        if lock:
            q = lock_for_update(q)
            # Re-read locked rows from the database, not the identity map.
            q = q.populate_existing()
        entity = q.first()
        if entity is None:
            raise NotFoundError(f"{self.label} not found", field=self.label.lower())
        return entity

    def find_by_id(self, ctx: ActingContext, entity_id, *, options=()):
        return self._get(ctx, entity_id, lock=False, options=options)

    def lock_for_update(self, ctx: ActingContext, entity_id, *, options=()):
        return self._get(ctx, entity_id, lock=True, options=options)

    def save(self, entity, *, flush: bool = True):
        db.session.add(entity)
        if flush:
            db.session.flush()
        return entity
