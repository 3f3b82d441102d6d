"""Tests for ratings, reputation counters and verification status."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_engine.domain.enums import ErrorKind, TrustLevel, VerificationStatus

if TYPE_CHECKING:
    from conftest import Lifecycle

    from escrow_engine.services.engine import EscrowEngine

BUYER = "buyer-1"
SELLER = "seller-1"
OPERATOR = "ops-1"


class TestReputation:
    async def test_unknown_user_gets_defaults(self, engine: EscrowEngine) -> None:
        rep = (await engine.get_reputation("nobody")).value
        assert rep.overall_score == 0.5
        assert rep.transaction_count == 0
        assert rep.trust_level == TrustLevel.NEW

    async def test_completion_counts_for_both_parties(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        await lifecycle.completed()
        assert (await engine.get_reputation(BUYER)).value.transaction_count == 1
        assert (await engine.get_reputation(SELLER)).value.transaction_count == 1


class TestRatings:
    async def test_positive_rating(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.completed()
        outcome = await engine.submit_rating(BUYER, str(tx.id), SELLER, 5, comment="Fast")
        assert outcome.ok
        assert outcome.value.flagged is False

        seller = (await engine.get_reputation(SELLER)).value
        assert seller.positive_ratings == 1
        assert seller.overall_score > 0.5

    async def test_negative_rating_lowers_score(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.completed()
        await engine.submit_rating(SELLER, str(tx.id), BUYER, 1)
        buyer = (await engine.get_reputation(BUYER)).value
        assert buyer.negative_ratings == 1
        assert buyer.overall_score < 0.5

    async def test_neutral_rating_moves_nothing(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.completed()
        await engine.submit_rating(BUYER, str(tx.id), SELLER, 3)
        seller = (await engine.get_reputation(SELLER)).value
        assert (seller.positive_ratings, seller.negative_ratings) == (0, 0)
        assert len((await engine.list_ratings(SELLER)).value) == 1

    async def test_one_rating_per_rater(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.completed()
        await engine.submit_rating(BUYER, str(tx.id), SELLER, 5)
        again = await engine.submit_rating(BUYER, str(tx.id), SELLER, 4)
        assert again.error_kind is ErrorKind.INTEGRITY_VIOLATION
        assert (await engine.get_reputation(SELLER)).value.positive_ratings == 1

    async def test_unsettled_transaction(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.create()
        outcome = await engine.submit_rating(BUYER, str(tx.id), SELLER, 5)
        assert outcome.error_kind is ErrorKind.INVALID_TRANSITION

    async def test_must_rate_counterparty(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.completed()
        assert (
            await engine.submit_rating(BUYER, str(tx.id), BUYER, 5)
        ).error_kind is ErrorKind.INTEGRITY_VIOLATION
        assert (
            await engine.submit_rating(BUYER, str(tx.id), "stranger", 5)
        ).error_kind is ErrorKind.INTEGRITY_VIOLATION
        assert (
            await engine.submit_rating("stranger", str(tx.id), SELLER, 5)
        ).error_kind is ErrorKind.UNAUTHORIZED

    async def test_rating_out_of_range(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.completed()
        outcome = await engine.submit_rating(BUYER, str(tx.id), SELLER, 6)
        assert outcome.error_kind is ErrorKind.VALIDATION_ERROR

    async def test_flagged_rater_is_stored_but_ignored(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        for _ in range(3):
            tx = await lifecycle.evidenced()
            await engine.open_dispute(str(tx.id), BUYER, "not delivered")
        assert (await engine.get_reputation(SELLER)).value.trust_level == TrustLevel.FLAGGED

        outcome = await engine.submit_rating(SELLER, str(tx.id), BUYER, 1)
        assert outcome.ok
        assert outcome.value.flagged is True
        assert (await engine.get_reputation(BUYER)).value.negative_ratings == 0


class TestVerificationStatus:
    async def test_operator_verifies_user(self, engine: EscrowEngine) -> None:
        outcome = await engine.set_verification_status(OPERATOR, SELLER, "verified")
        assert outcome.ok
        assert outcome.value.verification_status == VerificationStatus.VERIFIED
        assert outcome.value.trust_level == TrustLevel.VERIFIED

    async def test_non_operator_rejected(self, engine: EscrowEngine) -> None:
        outcome = await engine.set_verification_status(BUYER, BUYER, "verified")
        assert outcome.error_kind is ErrorKind.UNAUTHORIZED

    async def test_unknown_status(self, engine: EscrowEngine) -> None:
        outcome = await engine.set_verification_status(OPERATOR, SELLER, "royal")
        assert outcome.error_kind is ErrorKind.VALIDATION_ERROR
