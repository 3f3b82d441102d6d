"""Tests for the escrow and dispute state machine guards.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. Edge cases (disputes, expiry, terminal states) behave correctly.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from escrow_engine.domain.enums import ActorRole, EscrowStatus
from escrow_engine.domain.exceptions import InvalidTransitionError
from escrow_engine.domain.state_machine import (
    DisputeStateMachine,
    EscrowStateMachine,
    find_rule,
    parse_status,
)


class TestHappyPath:
    """Test the full happy-path lifecycle: INITIATED -> COMPLETED."""

    def test_full_lifecycle(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        assert sm.status == "INITIATED"

        sm.deposit_confirmed()
        assert sm.status == "FUNDED"

        sm.evidence_submitted()
        assert sm.status == "EVIDENCE_SUBMITTED"

        sm.delivery_confirmed()
        assert sm.status == "VERIFIED"

        sm.funds_released()
        assert sm.status == "COMPLETED"


class TestDisputePath:
    @pytest.mark.parametrize("status", ["FUNDED", "EVIDENCE_SUBMITTED", "VERIFIED"])
    def test_dispute_from_funded_states(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        sm.dispute_opened()
        assert sm.status == "DISPUTED"

    def test_dispute_resolved_for_seller(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        sm.resolved_for_seller()
        assert sm.status == "COMPLETED"

    def test_dispute_resolved_for_buyer(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        sm.resolved_for_buyer()
        assert sm.status == "REFUNDED"

    def test_cannot_dispute_unfunded(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        with pytest.raises(TransitionNotAllowed):
            sm.dispute_opened()


class TestExpiry:
    def test_unfunded_expiry_cancels(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        sm.expired_unfunded()
        assert sm.status == "CANCELLED"

    def test_funded_expiry_disputes(self) -> None:
        sm = EscrowStateMachine("VERIFIED")
        sm.expired_funded()
        assert sm.status == "DISPUTED"


class TestInvalidTransitions:
    def test_cannot_skip_to_completed(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()

    def test_cannot_cancel_after_evidence(self) -> None:
        sm = EscrowStateMachine("EVIDENCE_SUBMITTED")
        with pytest.raises(TransitionNotAllowed):
            sm.cancelled()

    @pytest.mark.parametrize("status", ["COMPLETED", "REFUNDED", "CANCELLED"])
    def test_terminal_states_allow_nothing(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        assert sm.get_allowed_events() == []

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            EscrowStateMachine("BOGUS")

    def test_fire_wraps_transition_errors(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        with pytest.raises(InvalidTransitionError):
            sm.fire("funds_released")

    def test_fire_rejects_unknown_event(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        with pytest.raises(InvalidTransitionError, match="unknown event"):
            sm.fire("teleport")


class TestAllowedEvents:
    def test_initiated_allowed_events(self) -> None:
        sm = EscrowStateMachine("INITIATED")
        assert set(sm.get_allowed_events()) == {
            "deposit_confirmed",
            "cancelled",
            "expired_unfunded",
        }

    def test_disputed_allowed_events(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        assert set(sm.get_allowed_events()) == {"resolved_for_seller", "resolved_for_buyer"}


class TestDisputeMachine:
    def test_review_then_resolve_then_close(self) -> None:
        sm = DisputeStateMachine("OPENED")
        assert sm.fire("start_review") == "REVIEWING"
        assert sm.fire("resolve_split") == "RESOLVED_SPLIT"
        assert sm.fire("close") == "CLOSED"

    def test_evidence_request_loop(self) -> None:
        sm = DisputeStateMachine("REVIEWING")
        assert sm.fire("request_evidence") == "EVIDENCE_REQUESTED"
        assert sm.fire("start_review") == "REVIEWING"

    def test_escalated_awaits_manual_resolution(self) -> None:
        sm = DisputeStateMachine("ESCALATED")
        assert set(sm.get_allowed_events()) == {
            "resolve_for_buyer",
            "resolve_for_seller",
            "resolve_split",
        }

    def test_cannot_close_unresolved(self) -> None:
        sm = DisputeStateMachine("REVIEWING")
        with pytest.raises(InvalidTransitionError):
            sm.fire("close")


class TestTransitionRules:
    def test_funding_is_buyer_only(self) -> None:
        rule = find_rule(EscrowStatus.INITIATED, EscrowStatus.FUNDED)
        assert rule is not None
        assert rule.actors == frozenset({ActorRole.BUYER})

    def test_cancel_is_joint(self) -> None:
        rule = find_rule(EscrowStatus.FUNDED, EscrowStatus.CANCELLED)
        assert rule is not None and rule.joint

    def test_unlisted_edge(self) -> None:
        assert find_rule(EscrowStatus.INITIATED, EscrowStatus.COMPLETED) is None

    def test_parse_status_rejects_unknown(self) -> None:
        with pytest.raises(InvalidTransitionError):
            parse_status("SHIPPED")
