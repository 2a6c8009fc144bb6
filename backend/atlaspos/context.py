"""
Acting context threaded through every service call.

The external identity/middleware layer resolves who is acting, for which
tenant and (optionally) which store, and hands the services this value.
Nothing in the core reads tenant or store from ambient state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .errors import ValidationError

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ALL_ROLES = {ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER}


@dataclass(frozen=True)
class ActingContext:
    tenant_id: int | None
    user_id: int | None = None
    store_id: int | None = None
    role: str = ROLE_CASHIER

    @classmethod
    def for_user(cls, user, store_id: int | None = None) -> "ActingContext":
        return cls(
            tenant_id=user.tenant_id,
            user_id=user.id,
            store_id=store_id if store_id is not None else user.store_id,
            role=user.role,
        )

    @property
    def is_cashier(self) -> bool:
        return self.role == ROLE_CASHIER

    def require_tenant(self) -> int:
        if self.tenant_id is None:
            raise ValidationError("Tenant context is required.", field="tenant")
        return self.tenant_id

    def with_store(self, store_id: int | None) -> "ActingContext":
        return replace(self, store_id=store_id)
