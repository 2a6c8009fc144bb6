"""
Error taxonomy shared by every service.

- ValidationError: malformed or policy-violating input. Never retried.
- NotFoundError: entity absent or outside the caller's tenant/store scope.
  The message is the same in both cases so tenants cannot probe each other.
- ConsistencyError: the operation would break a standing invariant
  (negative stock, second open shift, re-assigning an order).

Services raise these inside a transaction scope; the scope rolls back and
re-raises. Callers at the edge use `as_result` to get an explicit
ServiceResult instead of catching exceptions themselves.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONSISTENCY = "consistency"


class PosError(Exception):
    """Base class for domain errors raised by the POS core."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.kind.value, "message": self.message}
        if self.field:
            payload["field"] = self.field
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PosError):
    kind = ErrorKind.VALIDATION


class NotFoundError(PosError):
    kind = ErrorKind.NOT_FOUND


class ConsistencyError(PosError):
    kind = ErrorKind.CONSISTENCY


class NegativeStockError(ConsistencyError, ValidationError):
    """
    A stock adjustment would take a balance below zero.

    Reported with kind "consistency" but also catchable as ValidationError,
    since callers treat it as rejected input as well.
    """
    kind = ErrorKind.CONSISTENCY


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Either a value or a PosError, never both."""

    value: T | None = None
    error: PosError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def as_result(func: Callable[..., T], *args: Any, **kwargs: Any) -> ServiceResult[T]:
    """Run a service call and fold domain errors into a ServiceResult."""
    try:
        return ServiceResult(value=func(*args, **kwargs))
    except PosError as exc:
        return ServiceResult(error=exc)
