"""
Tenant and store scoping helpers.

SECURITY INVARIANTS:
1. Every service call carries an ActingContext with tenant_id set
2. Store IDs from caller input are validated against that tenant
3. Cross-tenant lookups fail with NotFoundError, never revealing existence
"""

from __future__ import annotations

from ..context import ActingContext
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Store, User


def require_store_in_tenant(store_id: int | None, tenant_id: int) -> Store:
    """
    Validate that a store belongs to the tenant.

    Raises NotFoundError if the store doesn't exist or belongs to another
    tenant; the message is identical in both cases.
    """
    if store_id is None:
        raise ValidationError("Store context is required.", field="store")
    store = db.session.query(Store).filter_by(id=store_id).first()
    if not store or store.tenant_id != tenant_id:
        raise NotFoundError("Store not found", field="store")
    return store


def resolve_store_id(ctx: ActingContext, store_id: int | None = None, user: User | None = None) -> int | None:
    """Explicit store wins, then the acting user's home store, then the context's store."""
    if store_id is not None:
        return store_id
    if user is not None and user.store_id is not None:
        return user.store_id
    return ctx.store_id


def get_acting_user(ctx: ActingContext) -> User | None:
    """Load the acting user within the tenant; None when the context has no user."""
    if ctx.user_id is None:
        return None
    user = db.session.query(User).filter_by(id=ctx.user_id, tenant_id=ctx.require_tenant()).first()
    if user is None:
        raise NotFoundError("User not found", field="user")
    return user
