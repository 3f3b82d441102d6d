"""FastAPI dependency providers and Outcome rendering.

Routes never touch sessions or repositories: they get the EscrowEngine from
``app.state``, call one facade method, and hand the Outcome to ``present``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from fastapi import Header, Request
from pydantic import BaseModel

from escrow_engine.config import Settings, get_settings
from escrow_engine.domain.enums import ErrorKind
from escrow_engine.infrastructure.database.orm_models import (
    CompensationRecord,
    EscrowDispute,
    EscrowProof,
    EscrowTransaction,
    TransactionRating,
    UserReputation,
)
from escrow_engine.schemas.escrow import (
    CompensationResponse,
    DisputeResponse,
    EscrowResponse,
    ProofResponse,
    RatingResponse,
    ReputationResponse,
)
from escrow_engine.services.engine import EscrowEngine

if TYPE_CHECKING:
    from escrow_engine.domain.exceptions import EscrowEngineError
    from escrow_engine.domain.results import Outcome

SchemaT = TypeVar("SchemaT", bound=BaseModel)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.CONFLICTING_DISPUTE: 409,
    ErrorKind.COLLABORATOR_UNAVAILABLE: 503,
    ErrorKind.STALE_WRITE: 409,
    ErrorKind.INTEGRITY_VIOLATION: 422,
    ErrorKind.DUPLICATE_OPERATION: 409,
    ErrorKind.VALIDATION_ERROR: 422,
}

_SCHEMA_BY_ENTITY: dict[type, type[BaseModel]] = {
    EscrowTransaction: EscrowResponse,
    EscrowProof: ProofResponse,
    EscrowDispute: DisputeResponse,
    UserReputation: ReputationResponse,
    TransactionRating: RatingResponse,
    CompensationRecord: CompensationResponse,
}


class RejectedOperation(Exception):  # noqa: N818
    """Raised by ``present`` for a failed Outcome; rendered by ErrorHandlerMiddleware."""

    def __init__(self, error: EscrowEngineError, current: Any = None) -> None:
        super().__init__(error.message)
        self.error = error
        self.current = current

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND.get(self.error.kind, 400)

    def body(self) -> dict:
        return {
            "error": self.error.code,
            "message": self.error.message,
            "current": serialize_entity(self.current),
        }


def serialize_entity(entity: Any) -> dict | None:
    if entity is None:
        return None
    if isinstance(entity, dict):
        return entity
    schema = _SCHEMA_BY_ENTITY.get(type(entity))
    if schema is None:
        return None
    return schema.model_validate(entity).model_dump(mode="json")


def present(outcome: Outcome, schema: type[SchemaT]) -> SchemaT:
    """Render a successful Outcome as ``schema``; raise RejectedOperation otherwise."""
    if not outcome.ok:
        raise RejectedOperation(outcome.error, outcome.current)
    return schema.model_validate(outcome.value)


def present_many(outcome: Outcome, schema: type[SchemaT]) -> list[SchemaT]:
    if not outcome.ok:
        raise RejectedOperation(outcome.error, outcome.current)
    return [schema.model_validate(item) for item in outcome.value]


def get_engine(request: Request) -> EscrowEngine:
    """Provide the EscrowEngine wired during app startup."""
    return request.app.state.engine


def get_actor_id(x_actor_id: str = Header(..., min_length=1, max_length=64)) -> str:
    """Caller identity, taken from the ``X-Actor-Id`` header."""
    return x_actor_id


def get_idempotency_key(
    idempotency_key: str | None = Header(default=None, max_length=128),
) -> str | None:
    """Optional ``Idempotency-Key`` header for mutating calls."""
    return idempotency_key


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
