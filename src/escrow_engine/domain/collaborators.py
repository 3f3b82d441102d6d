"""External collaborator protocols.

Defines the narrow interfaces the engine consumes (settlement, arbitration)
and the one it publishes to (notification). These are Protocols (structural
subtyping) so concrete implementations don't need to inherit from a base
class — they just need to match the shape.

The domain layer has ZERO imports from LiteLLM, payment SDKs or any
external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from escrow_engine.domain.enums import ArbitrationDecision

# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DepositConfirmation:
    """Answer to ``confirm_deposit``."""

    confirmed: bool
    settlement_ref: str | None = None


@dataclass(frozen=True)
class SettlementReceipt:
    """Answer to ``release_funds`` / ``refund``.

    ``settlement_ref`` is opaque to the engine (tx hash, contract address, ...).
    """

    settlement_ref: str
    recipient: str
    amount: Decimal


@runtime_checkable
class SettlementCollaborator(Protocol):
    """Moves funds on instruction. Calls are idempotent by transaction id + operation."""

    async def confirm_deposit(self, transaction_id: str) -> DepositConfirmation: ...

    async def release_funds(
        self, transaction_id: str, recipient: str, amount: Decimal
    ) -> SettlementReceipt: ...

    async def refund(
        self, transaction_id: str, recipient: str, amount: Decimal
    ) -> SettlementReceipt: ...


# ---------------------------------------------------------------------------
# Arbitration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartyProfile:
    """Reputation snapshot of one party, as seen by the arbitrator."""

    user_id: str
    overall_score: float
    transaction_count: int
    disputes_initiated: int
    disputes_lost: int
    trust_level: str


@dataclass(frozen=True)
class CaseBundle:
    """Everything the arbitrator needs to decide a dispute.

    Attributes:
        dispute_id: UUID of the dispute (the dedup key for decisions).
        transaction: Snapshot of the escrow transaction fields.
        proofs: Snapshots of every proof on the transaction.
        buyer: Buyer reputation snapshot.
        seller: Seller reputation snapshot.
        initiator_id: Who opened the dispute.
        reason: Short dispute reason.
        description: Free-text dispute description.
    """

    dispute_id: str
    transaction: dict[str, Any]
    proofs: list[dict[str, Any]]
    buyer: PartyProfile
    seller: PartyProfile
    initiator_id: str
    reason: str
    description: str = ""

    @property
    def amount(self) -> Decimal:
        return Decimal(str(self.transaction["amount"]))

    @property
    def initiated_by_buyer(self) -> bool:
        return self.initiator_id == self.buyer.user_id

    def to_dict(self) -> dict:
        return {
            "dispute_id": self.dispute_id,
            "transaction": self.transaction,
            "proofs": self.proofs,
            "buyer": self.buyer.__dict__,
            "seller": self.seller.__dict__,
            "initiator_id": self.initiator_id,
            "reason": self.reason,
            "description": self.description,
        }


@dataclass(frozen=True)
class ArbitrationRecord:
    """Decision returned by an arbitration collaborator.

    Attributes:
        decision: One of ArbitrationDecision.
        confidence: 0.0 - 1.0; below the configured threshold escalates.
        rationale: Human-readable explanation.
        compensation_amount: Optional remedy amount (refund portion for splits).
        assessment_id: The collaborator's own decision record id.
    """

    decision: ArbitrationDecision
    confidence: float
    rationale: str = ""
    compensation_amount: Decimal | None = None
    assessment_id: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize for storage in audit metadata."""
        return {
            "decision": self.decision.value,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "compensation_amount": (
                str(self.compensation_amount)
                if self.compensation_amount is not None
                else None
            ),
            "assessment_id": self.assessment_id,
        }


@runtime_checkable
class ArbitrationCollaborator(Protocol):
    """Protocol that all arbitrator implementations must satisfy.

    Concrete implementations:
        - arbitration/heuristic.py  (reputation + evidence heuristic)
        - arbitration/llm_judge.py  (LiteLLM judge)
        - arbitration/__init__.py   (MockArbitrator for dry runs)
    """

    async def assess(self, bundle: CaseBundle) -> ArbitrationRecord:
        """Decide a dispute. Retries with an identical bundle must be safe."""
        ...


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionEvent:
    """Domain event emitted after every committed state transition."""

    transaction_id: str
    from_status: str | None
    to_status: str
    actor_id: str
    timestamp: datetime
    dispute_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "dispute_id": self.dispute_id,
        }


@runtime_checkable
class NotificationCollaborator(Protocol):
    async def publish(self, event: TransitionEvent) -> None: ...
