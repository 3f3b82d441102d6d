"""Domain layer — pure business logic with zero framework dependencies."""

from escrow_engine.domain.authorization import AuthorizationGuard
from escrow_engine.domain.collaborators import (
    ArbitrationCollaborator,
    ArbitrationRecord,
    CaseBundle,
    NotificationCollaborator,
    SettlementCollaborator,
    TransitionEvent,
)
from escrow_engine.domain.enums import (
    ArbitrationDecision,
    DisputeStatus,
    ErrorKind,
    EscrowStatus,
    EventType,
    TrustLevel,
)
from escrow_engine.domain.exceptions import (
    ConflictingDisputeError,
    EscrowEngineError,
    InvalidTransitionError,
    UnauthorizedError,
)
from escrow_engine.domain.results import Outcome
from escrow_engine.domain.state_machine import (
    DisputeStateMachine,
    EscrowStateMachine,
)

__all__ = [
    "ArbitrationCollaborator",
    "ArbitrationDecision",
    "ArbitrationRecord",
    "AuthorizationGuard",
    "CaseBundle",
    "ConflictingDisputeError",
    "DisputeStateMachine",
    "DisputeStatus",
    "ErrorKind",
    "EscrowEngineError",
    "EscrowStateMachine",
    "EscrowStatus",
    "EventType",
    "InvalidTransitionError",
    "NotificationCollaborator",
    "Outcome",
    "SettlementCollaborator",
    "TransitionEvent",
    "TrustLevel",
    "UnauthorizedError",
]
