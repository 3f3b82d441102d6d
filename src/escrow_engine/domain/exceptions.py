"""Domain exceptions for the escrow engine.

These exceptions are framework-agnostic and represent business rule violations.
They are raised inside a component and converted into Outcome values at the
service boundary (see domain/results.py). Anything that still escapes is
translated to an HTTP response by the API layer's middleware.
"""

from __future__ import annotations

from escrow_engine.domain.enums import ErrorKind


class EscrowEngineError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    retryable: bool = False

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.kind.value
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidTransitionError(EscrowEngineError):
    """Raised when a requested status change is not permitted from the current state.

    Example: INITIATED -> COMPLETED (must go through FUNDED, EVIDENCE_SUBMITTED, ...)
    """

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        current_state: str,
        attempted: str,
        reason: str | None = None,
    ) -> None:
        message = f"Invalid transition: {current_state} -> {attempted}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message)
        self.current_state = current_state
        self.attempted = attempted
        self.reason = reason


class UnauthorizedError(EscrowEngineError):
    """Raised when an actor lacks the role or standing for an action."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, actor_id: str, action: str, reason: str = "") -> None:
        message = f"Actor {actor_id} may not {action}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message)
        self.actor_id = actor_id
        self.action = action


class ConflictingDisputeError(EscrowEngineError):
    """Raised when a second dispute is opened while one is still open."""

    kind = ErrorKind.CONFLICTING_DISPUTE

    def __init__(self, transaction_id: str, open_dispute_id: str) -> None:
        super().__init__(
            message=(
                f"Transaction {transaction_id} already has an open dispute: "
                f"{open_dispute_id}"
            ),
        )
        self.transaction_id = transaction_id
        self.open_dispute_id = open_dispute_id


# --- Collaborator Errors ---


class CollaboratorUnavailableError(EscrowEngineError):
    """Raised when the settlement or arbitration collaborator timed out or errored.

    Retryable: the caller or the background sweep retries with backoff while
    the transaction stays in its prior state.
    """

    kind = ErrorKind.COLLABORATOR_UNAVAILABLE
    retryable = True

    def __init__(self, collaborator: str, operation: str, detail: str = "") -> None:
        message = f"{collaborator}.{operation} unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message)
        self.collaborator = collaborator
        self.operation = operation


# --- Consistency Errors ---


class StaleWriteError(EscrowEngineError):
    """Raised on an optimistic-concurrency conflict for the same entity."""

    kind = ErrorKind.STALE_WRITE
    retryable = True

    def __init__(self, entity: str = "entity", detail: str = "") -> None:
        message = f"Concurrent modification of {entity}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message)


class IntegrityViolationError(EscrowEngineError):
    """Raised when an invariant would be broken (e.g. duplicate rating)."""

    kind = ErrorKind.INTEGRITY_VIOLATION


class ValidationError(EscrowEngineError):
    """Raised when input is malformed (bad amount, unknown enum value, ...)."""

    kind = ErrorKind.VALIDATION_ERROR


# --- Lookup Errors ---


class EntityNotFoundError(EscrowEngineError):
    """Raised when an entity id does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(message=f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class TransactionNotFoundError(EntityNotFoundError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__("Escrow transaction", transaction_id)


class DisputeNotFoundError(EntityNotFoundError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__("Dispute", dispute_id)


class ProofNotFoundError(EntityNotFoundError):
    def __init__(self, proof_id: str) -> None:
        super().__init__("Proof", proof_id)


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowEngineError):
    """Raised when an idempotency key is already claimed by an in-flight call."""

    kind = ErrorKind.DUPLICATE_OPERATION

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Operation already in progress for key: {idempotency_key}",
        )
        self.idempotency_key = idempotency_key
