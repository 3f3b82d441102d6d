"""Domain enumerations for the escrow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Custody states of an escrow transaction.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    INITIATED = "INITIATED"
    FUNDED = "FUNDED"
    EVIDENCE_SUBMITTED = "EVIDENCE_SUBMITTED"
    VERIFIED = "VERIFIED"
    DISPUTED = "DISPUTED"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def holds_funds(self) -> bool:
        return self in FUNDED_STATUSES or self is EscrowStatus.DISPUTED


TERMINAL_STATUSES = frozenset(
    {EscrowStatus.COMPLETED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED}
)

# Statuses from which a dispute can be opened (funds held, no dispute yet).
FUNDED_STATUSES = frozenset(
    {EscrowStatus.FUNDED, EscrowStatus.EVIDENCE_SUBMITTED, EscrowStatus.VERIFIED}
)


class DisputeStatus(enum.StrEnum):
    """Lifecycle states of a dispute (nested inside EscrowStatus.DISPUTED)."""

    OPENED = "OPENED"
    REVIEWING = "REVIEWING"
    EVIDENCE_REQUESTED = "EVIDENCE_REQUESTED"
    ESCALATED = "ESCALATED"
    RESOLVED_BUYER = "RESOLVED_BUYER"
    RESOLVED_SELLER = "RESOLVED_SELLER"
    RESOLVED_SPLIT = "RESOLVED_SPLIT"
    CLOSED = "CLOSED"

    @property
    def is_resolved(self) -> bool:
        return self in RESOLVED_DISPUTE_STATUSES


RESOLVED_DISPUTE_STATUSES = frozenset(
    {
        DisputeStatus.RESOLVED_BUYER,
        DisputeStatus.RESOLVED_SELLER,
        DisputeStatus.RESOLVED_SPLIT,
    }
)


class ArbitrationDecision(enum.StrEnum):
    """Decision values returned by an arbitration collaborator."""

    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    RESOLVED_SPLIT = "resolved_split"
    NEED_MORE_INFO = "need_more_info"


class DecisionSource(enum.StrEnum):
    """Where an arbitration decision came from."""

    AUTOMATED = "automated"
    MANUAL = "manual"


class ActorRole(enum.StrEnum):
    """Role an actor plays on a given transaction."""

    BUYER = "buyer"
    SELLER = "seller"
    SYSTEM = "system"
    NONE = "none"


SYSTEM_ACTOR = "SYSTEM"


class TrustLevel(enum.StrEnum):
    NEW = "new"
    TRUSTED = "trusted"
    VERIFIED = "verified"
    ELITE = "elite"
    FLAGGED = "flagged"


class VerificationStatus(enum.StrEnum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"


class ProofType(enum.StrEnum):
    """Kinds of delivery evidence a party can attach to a transaction."""

    PHOTO = "photo"
    DOCUMENT = "document"
    TRACKING = "tracking"
    DELIVERY_CONFIRMATION = "delivery_confirmation"
    MESSAGE = "message"
    OTHER = "other"

    @property
    def requires_content(self) -> bool:
        return self not in (ProofType.MESSAGE, ProofType.OTHER)


class CompensationStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every state transition MUST produce exactly one event.
    This is the append-only forensic trail for disputes.
    """

    # Lifecycle events
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_FUNDED = "TRANSACTION_FUNDED"
    EVIDENCE_SUBMITTED = "EVIDENCE_SUBMITTED"
    DELIVERY_VERIFIED = "DELIVERY_VERIFIED"
    FUNDS_RELEASED = "FUNDS_RELEASED"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    TRANSACTION_CANCELLED = "TRANSACTION_CANCELLED"
    TRANSACTION_EXPIRED = "TRANSACTION_EXPIRED"

    # Evidence events (no status change)
    PROOF_SUBMITTED = "PROOF_SUBMITTED"
    PROOF_VERIFIED = "PROOF_VERIFIED"

    # Dispute events
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_REVIEWING = "DISPUTE_REVIEWING"
    DISPUTE_EVIDENCE_REQUESTED = "DISPUTE_EVIDENCE_REQUESTED"
    DISPUTE_ESCALATED = "DISPUTE_ESCALATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    DISPUTE_CLOSED = "DISPUTE_CLOSED"

    # Settlement events
    FUNDS_REFUNDED = "FUNDS_REFUNDED"
    COMPENSATION_ISSUED = "COMPENSATION_ISSUED"


class ErrorKind(enum.StrEnum):
    """Typed rejection kinds returned to callers."""

    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNAUTHORIZED = "UNAUTHORIZED"
    CONFLICTING_DISPUTE = "CONFLICTING_DISPUTE"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"
    STALE_WRITE = "STALE_WRITE"
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_OPERATION = "DUPLICATE_OPERATION"
    VALIDATION_ERROR = "VALIDATION_ERROR"
