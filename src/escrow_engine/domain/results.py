"""Outcome values returned across component boundaries.

Service entry points never let a domain exception escape. They return an
Outcome carrying either the updated entity or the typed error together with
the current (unmodified) entity, so callers can reconcile without re-fetching.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from escrow_engine.domain.enums import ErrorKind
from escrow_engine.domain.exceptions import EscrowEngineError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine operation.

    Attributes:
        value: The updated entity on success.
        error: The typed rejection on failure.
        current: The entity as it stands after a rejection (unchanged).
        replayed: True when an idempotency key short-circuited the call.
    """

    value: T | None = None
    error: EscrowEngineError | None = None
    current: Any = None
    replayed: bool = False

    @classmethod
    def success(cls, value: T, replayed: bool = False) -> Outcome[T]:
        return cls(value=value, replayed=replayed)

    @classmethod
    def failure(cls, error: EscrowEngineError, current: Any = None) -> Outcome[T]:
        return cls(error=error, current=current)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the value or re-raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def as_pair(self) -> tuple[T | None, EscrowEngineError | None]:
        return self.value, self.error
