"""Tests for the AuthorizationGuard predicates."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from escrow_engine.domain.authorization import AuthorizationGuard, in_cooldown, role_of
from escrow_engine.domain.enums import ActorRole
from escrow_engine.domain.exceptions import (
    ConflictingDisputeError,
    IntegrityViolationError,
    InvalidTransitionError,
    UnauthorizedError,
)

NOW = datetime(2026, 1, 5, tzinfo=UTC)


def _tx(status: str = "FUNDED", **overrides: object) -> SimpleNamespace:
    fields = {"id": uuid.uuid4(), "buyer_id": "buyer", "seller_id": "seller", "status": status}
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _rep(score: float = 0.5, cooldown_until: datetime | None = None) -> SimpleNamespace:
    return SimpleNamespace(overall_score=score, cooldown_until=cooldown_until)


@pytest.fixture
def guard() -> AuthorizationGuard:
    return AuthorizationGuard(min_score_to_transact=0.2)


class TestRoles:
    def test_role_of(self) -> None:
        tx = _tx()
        assert role_of("buyer", tx) is ActorRole.BUYER
        assert role_of("seller", tx) is ActorRole.SELLER
        assert role_of("SYSTEM", tx) is ActorRole.SYSTEM
        assert role_of("stranger", tx) is ActorRole.NONE

    def test_cooldown_window(self) -> None:
        assert in_cooldown(_rep(cooldown_until=NOW + timedelta(hours=1)), NOW)
        assert not in_cooldown(_rep(cooldown_until=NOW - timedelta(hours=1)), NOW)
        assert not in_cooldown(None, NOW)


class TestCreateEscrow:
    def test_party_may_create(self, guard: AuthorizationGuard) -> None:
        guard.check_create_escrow("buyer", "buyer", "seller", _rep(), NOW)

    def test_same_buyer_and_seller(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(IntegrityViolationError):
            guard.check_create_escrow("buyer", "buyer", "buyer")

    def test_outsider_rejected(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(UnauthorizedError):
            guard.check_create_escrow("broker", "buyer", "seller")

    def test_cooldown_blocks_creation(self, guard: AuthorizationGuard) -> None:
        rep = _rep(cooldown_until=NOW + timedelta(days=1))
        with pytest.raises(UnauthorizedError, match="cooldown"):
            guard.check_create_escrow("buyer", "buyer", "seller", rep, NOW)

    def test_low_score_blocks_creation(self, guard: AuthorizationGuard) -> None:
        assert not guard.can_create_escrow("buyer", "buyer", "seller", _rep(score=0.1))

    def test_seller_cannot_open_for_buyer_in_cooldown(self, guard: AuthorizationGuard) -> None:
        buyer_rep = _rep(cooldown_until=NOW + timedelta(days=1))
        with pytest.raises(UnauthorizedError, match="buyer buyer in cooldown"):
            guard.check_create_escrow("seller", "buyer", "seller", _rep(), NOW, buyer_rep)

    def test_seller_cannot_open_for_low_score_buyer(self, guard: AuthorizationGuard) -> None:
        assert not guard.can_create_escrow(
            "seller", "buyer", "seller", _rep(), buyer_reputation=_rep(score=0.1)
        )
        assert guard.can_create_escrow(
            "seller", "buyer", "seller", _rep(), buyer_reputation=_rep(score=0.6)
        )

    def test_buyer_reputation_ignored_when_buyer_acts(self, guard: AuthorizationGuard) -> None:
        guard.check_create_escrow(
            "buyer", "buyer", "seller", _rep(), NOW, _rep(cooldown_until=NOW + timedelta(days=1))
        )


class TestTransitions:
    def test_buyer_funds(self, guard: AuthorizationGuard) -> None:
        assert guard.can_transition("buyer", _tx("INITIATED"), "FUNDED")

    def test_seller_cannot_fund(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(UnauthorizedError):
            guard.check_transition("seller", _tx("INITIATED"), "FUNDED")

    def test_system_can_release(self, guard: AuthorizationGuard) -> None:
        assert guard.can_transition("SYSTEM", _tx("VERIFIED"), "COMPLETED")

    def test_seller_cannot_release(self, guard: AuthorizationGuard) -> None:
        assert not guard.can_transition("seller", _tx("VERIFIED"), "COMPLETED")

    def test_terminal_rejects_everyone(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(InvalidTransitionError, match="terminal"):
            guard.check_transition("SYSTEM", _tx("COMPLETED"), "REFUNDED")

    def test_edge_not_in_table(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(InvalidTransitionError):
            guard.check_transition("buyer", _tx("INITIATED"), "COMPLETED")

    def test_outsider_rejected(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(UnauthorizedError):
            guard.check_transition("stranger", _tx("FUNDED"), "CANCELLED")

    def test_cooldown_blocks_move_to_disputed(self, guard: AuthorizationGuard) -> None:
        rep = _rep(cooldown_until=NOW + timedelta(hours=3))
        with pytest.raises(UnauthorizedError, match="cooldown"):
            guard.check_transition("buyer", _tx("FUNDED"), "DISPUTED", rep, NOW)
        guard.check_transition("buyer", _tx("FUNDED"), "DISPUTED", _rep(), NOW)

    def test_can_transition_consults_reputation(self, guard: AuthorizationGuard) -> None:
        rep = _rep(cooldown_until=datetime.now(UTC) + timedelta(days=1))
        assert guard.can_transition("buyer", _tx("FUNDED"), "DISPUTED")
        assert not guard.can_transition("buyer", _tx("FUNDED"), "DISPUTED", rep)
        assert guard.can_transition("buyer", _tx("VERIFIED"), "COMPLETED", rep)


class TestDisputes:
    def test_party_opens(self, guard: AuthorizationGuard) -> None:
        assert guard.can_open_dispute("seller", _tx("VERIFIED"))

    def test_second_dispute_conflicts(self, guard: AuthorizationGuard) -> None:
        open_dispute = SimpleNamespace(id=uuid.uuid4())
        with pytest.raises(ConflictingDisputeError):
            guard.check_open_dispute("buyer", _tx("DISPUTED"), open_dispute)

    def test_unfunded_rejected(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(InvalidTransitionError):
            guard.check_open_dispute("buyer", _tx("INITIATED"))

    def test_cooldown_blocks_dispute(self, guard: AuthorizationGuard) -> None:
        rep = _rep(cooldown_until=NOW + timedelta(hours=3))
        with pytest.raises(UnauthorizedError):
            guard.check_open_dispute("buyer", _tx(), None, rep, NOW)


class TestEvidence:
    def test_proof_needs_held_funds(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(InvalidTransitionError):
            guard.check_submit_proof("seller", _tx("INITIATED"))
        assert guard.can_submit_proof("seller", _tx("DISPUTED"))

    def test_only_counterparty_verifies(self, guard: AuthorizationGuard) -> None:
        proof = SimpleNamespace(id=uuid.uuid4(), submitter_id="seller", verified=False)
        assert guard.can_verify_proof("buyer", _tx(), proof)
        assert guard.can_verify_proof("SYSTEM", _tx(), proof)
        assert not guard.can_verify_proof("seller", _tx(), proof)

    def test_already_verified(self, guard: AuthorizationGuard) -> None:
        proof = SimpleNamespace(id=uuid.uuid4(), submitter_id="seller", verified=True)
        with pytest.raises(IntegrityViolationError):
            guard.check_verify_proof("buyer", _tx(), proof)


class TestRatings:
    def test_rate_counterparty_after_settlement(self, guard: AuthorizationGuard) -> None:
        assert guard.can_rate("buyer", _tx("COMPLETED"))
        assert guard.can_rate("seller", _tx("REFUNDED"), "buyer")

    def test_not_settled(self, guard: AuthorizationGuard) -> None:
        assert not guard.can_rate("buyer", _tx("VERIFIED"))

    def test_self_rating(self, guard: AuthorizationGuard) -> None:
        with pytest.raises(IntegrityViolationError):
            guard.check_rate("buyer", _tx("COMPLETED"), "buyer")

    def test_duplicate_rating(self, guard: AuthorizationGuard) -> None:
        assert not guard.can_rate("buyer", _tx("COMPLETED"), "seller", existing_rating=object())

    def test_rating_bounds(self) -> None:
        AuthorizationGuard.check_rating_value(5)
        with pytest.raises(Exception, match="between 1 and 5"):
            AuthorizationGuard.check_rating_value(6)
