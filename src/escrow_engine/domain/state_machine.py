"""Escrow transaction and dispute state machine guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or the sweep asks for, an illegal transition
(e.g., INITIATED -> COMPLETED) raises TransitionNotAllowed, which ``fire``
reports as InvalidTransitionError.

The machines are instantiated per-entity and validate transitions before the
ORM row's status field is updated.

Transaction transition table:
    INITIATED           -> FUNDED              (deposit_confirmed)    buyer
    FUNDED              -> EVIDENCE_SUBMITTED  (evidence_submitted)   seller
    EVIDENCE_SUBMITTED  -> VERIFIED            (delivery_confirmed)   buyer / auto-timeout
    VERIFIED            -> COMPLETED           (funds_released)       buyer / auto-release
    FUNDED|EVIDENCE_SUBMITTED|VERIFIED -> DISPUTED (dispute_opened)   buyer or seller
    DISPUTED            -> COMPLETED           (resolved_for_seller)  system
    DISPUTED            -> REFUNDED            (resolved_for_buyer)   system
    INITIATED|FUNDED    -> CANCELLED           (cancelled)            buyer and seller
    INITIATED           -> CANCELLED           (expired_unfunded)     expiry sweep
    FUNDED|EVIDENCE_SUBMITTED|VERIFIED -> DISPUTED (expired_funded)   expiry sweep

Dispute transition table:
    OPENED|EVIDENCE_REQUESTED -> REVIEWING          (start_review)
    REVIEWING                 -> EVIDENCE_REQUESTED (request_evidence)
    REVIEWING                 -> ESCALATED          (escalate)
    REVIEWING|ESCALATED|EVIDENCE_REQUESTED -> RESOLVED_* (resolve_for_buyer, ...)
    RESOLVED_*                -> CLOSED             (close)
"""

from __future__ import annotations

from dataclasses import dataclass

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from escrow_engine.domain.enums import ActorRole, EscrowStatus
from escrow_engine.domain.exceptions import InvalidTransitionError


class _StatusMachine(StateMachine):
    """Shared helpers for machines that are resumed from a stored status."""

    EVENT_NAMES: frozenset[str] = frozenset()

    def __init__(self, current_status: str) -> None:
        # Validate that the status string is a known state value
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        # start_value expects the string value, not the State object
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]

    def fire(self, event_name: str) -> str:
        """Fire a named event and return the resulting status.

        Raises:
            InvalidTransitionError: If the event is unknown or not allowed.
        """
        event_method = getattr(self, event_name, None)
        if event_name not in self.EVENT_NAMES or not callable(event_method):
            raise InvalidTransitionError(self.status, event_name, "unknown event")
        before = self.status
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidTransitionError(before, event_name) from err
        return self.status


class EscrowStateMachine(_StatusMachine):
    """State machine that guards escrow transaction custody transitions.

    Usage:
        sm = EscrowStateMachine(current_status="FUNDED")
        sm.evidence_submitted()  # transitions to EVIDENCE_SUBMITTED
        sm.status                # "EVIDENCE_SUBMITTED"
    """

    # --- States ---
    INITIATED = State("INITIATED", initial=True)
    FUNDED = State("FUNDED")
    EVIDENCE_SUBMITTED = State("EVIDENCE_SUBMITTED")
    VERIFIED = State("VERIFIED")
    DISPUTED = State("DISPUTED")
    COMPLETED = State("COMPLETED", final=True)
    REFUNDED = State("REFUNDED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    # --- Events / Transitions ---

    # Happy path
    deposit_confirmed = INITIATED.to(FUNDED)
    evidence_submitted = FUNDED.to(EVIDENCE_SUBMITTED)
    delivery_confirmed = EVIDENCE_SUBMITTED.to(VERIFIED)
    funds_released = VERIFIED.to(COMPLETED)

    # Disputes
    dispute_opened = (
        FUNDED.to(DISPUTED) | EVIDENCE_SUBMITTED.to(DISPUTED) | VERIFIED.to(DISPUTED)
    )
    resolved_for_seller = DISPUTED.to(COMPLETED)
    resolved_for_buyer = DISPUTED.to(REFUNDED)

    # Early exits
    cancelled = INITIATED.to(CANCELLED) | FUNDED.to(CANCELLED)

    # Expiry sweep (actor-less)
    expired_unfunded = INITIATED.to(CANCELLED)
    expired_funded = (
        FUNDED.to(DISPUTED) | EVIDENCE_SUBMITTED.to(DISPUTED) | VERIFIED.to(DISPUTED)
    )

    EVENT_NAMES = frozenset(
        {
            "deposit_confirmed",
            "evidence_submitted",
            "delivery_confirmed",
            "funds_released",
            "dispute_opened",
            "resolved_for_seller",
            "resolved_for_buyer",
            "cancelled",
            "expired_unfunded",
            "expired_funded",
        }
    )

    def __init__(self, current_status: str = "INITIATED") -> None:
        super().__init__(current_status)


class DisputeStateMachine(_StatusMachine):
    """State machine for the dispute sub-lifecycle.

    Only meaningful while the parent transaction is DISPUTED.
    """

    OPENED = State("OPENED", initial=True)
    REVIEWING = State("REVIEWING")
    EVIDENCE_REQUESTED = State("EVIDENCE_REQUESTED")
    ESCALATED = State("ESCALATED")
    RESOLVED_BUYER = State("RESOLVED_BUYER")
    RESOLVED_SELLER = State("RESOLVED_SELLER")
    RESOLVED_SPLIT = State("RESOLVED_SPLIT")
    CLOSED = State("CLOSED", final=True)

    start_review = OPENED.to(REVIEWING) | EVIDENCE_REQUESTED.to(REVIEWING)
    request_evidence = REVIEWING.to(EVIDENCE_REQUESTED)
    escalate = REVIEWING.to(ESCALATED)

    resolve_for_buyer = (
        REVIEWING.to(RESOLVED_BUYER)
        | ESCALATED.to(RESOLVED_BUYER)
        | EVIDENCE_REQUESTED.to(RESOLVED_BUYER)
    )
    resolve_for_seller = (
        REVIEWING.to(RESOLVED_SELLER)
        | ESCALATED.to(RESOLVED_SELLER)
        | EVIDENCE_REQUESTED.to(RESOLVED_SELLER)
    )
    resolve_split = (
        REVIEWING.to(RESOLVED_SPLIT)
        | ESCALATED.to(RESOLVED_SPLIT)
        | EVIDENCE_REQUESTED.to(RESOLVED_SPLIT)
    )

    close = (
        RESOLVED_BUYER.to(CLOSED) | RESOLVED_SELLER.to(CLOSED) | RESOLVED_SPLIT.to(CLOSED)
    )

    EVENT_NAMES = frozenset(
        {
            "start_review",
            "request_evidence",
            "escalate",
            "resolve_for_buyer",
            "resolve_for_seller",
            "resolve_split",
            "close",
        }
    )

    def __init__(self, current_status: str = "OPENED") -> None:
        super().__init__(current_status)


# ---------------------------------------------------------------------------
# Request-level transition rules (who may ask for which edge)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionRule:
    """One requestable edge of the transaction table."""

    source: EscrowStatus
    target: EscrowStatus
    event: str
    actors: frozenset[ActorRole]
    # Both parties must consent before the edge fires.
    joint: bool = False


_BUYER = frozenset({ActorRole.BUYER, ActorRole.SYSTEM})
_SELLER = frozenset({ActorRole.SELLER})
_PARTIES = frozenset({ActorRole.BUYER, ActorRole.SELLER})
_SYSTEM = frozenset({ActorRole.SYSTEM})

TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(EscrowStatus.INITIATED, EscrowStatus.FUNDED, "deposit_confirmed",
                   frozenset({ActorRole.BUYER})),
    TransitionRule(EscrowStatus.FUNDED, EscrowStatus.EVIDENCE_SUBMITTED,
                   "evidence_submitted", _SELLER),
    TransitionRule(EscrowStatus.EVIDENCE_SUBMITTED, EscrowStatus.VERIFIED,
                   "delivery_confirmed", _BUYER),
    TransitionRule(EscrowStatus.VERIFIED, EscrowStatus.COMPLETED, "funds_released", _BUYER),
    TransitionRule(EscrowStatus.FUNDED, EscrowStatus.DISPUTED, "dispute_opened", _PARTIES),
    TransitionRule(EscrowStatus.EVIDENCE_SUBMITTED, EscrowStatus.DISPUTED,
                   "dispute_opened", _PARTIES),
    TransitionRule(EscrowStatus.VERIFIED, EscrowStatus.DISPUTED, "dispute_opened", _PARTIES),
    TransitionRule(EscrowStatus.DISPUTED, EscrowStatus.COMPLETED,
                   "resolved_for_seller", _SYSTEM),
    TransitionRule(EscrowStatus.DISPUTED, EscrowStatus.REFUNDED,
                   "resolved_for_buyer", _SYSTEM),
    TransitionRule(EscrowStatus.INITIATED, EscrowStatus.CANCELLED, "cancelled",
                   _PARTIES, joint=True),
    TransitionRule(EscrowStatus.FUNDED, EscrowStatus.CANCELLED, "cancelled",
                   _PARTIES, joint=True),
)

_RULES_BY_EDGE = {(rule.source, rule.target): rule for rule in TRANSITION_RULES}


def find_rule(source: EscrowStatus, target: EscrowStatus) -> TransitionRule | None:
    """Return the requestable rule for an edge, or None if the edge is not in the table."""
    return _RULES_BY_EDGE.get((source, target))


def parse_status(value: str) -> EscrowStatus:
    """Parse a caller-supplied status, rejecting unknown values at the boundary."""
    try:
        return EscrowStatus(value)
    except ValueError as err:
        raise InvalidTransitionError("?", str(value), "unknown status") from err
