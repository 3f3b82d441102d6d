"""Unit tests for the HeuristicArbitrator and MockArbitrator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from escrow_engine.arbitration import MockArbitrator
from escrow_engine.arbitration.heuristic import HeuristicArbitrator
from escrow_engine.domain.collaborators import ArbitrationRecord, CaseBundle, PartyProfile
from escrow_engine.domain.enums import ArbitrationDecision


def _party(user_id: str, score: float = 0.5) -> PartyProfile:
    return PartyProfile(
        user_id=user_id,
        overall_score=score,
        transaction_count=3,
        disputes_initiated=0,
        disputes_lost=0,
        trust_level="new",
    )


def _bundle(
    buyer_score: float = 0.5,
    seller_score: float = 0.5,
    proofs: int = 1,
    initiator: str = "buyer-1",
) -> CaseBundle:
    return CaseBundle(
        dispute_id="d-1",
        transaction={"id": "t-1", "amount": "200", "status": "DISPUTED"},
        proofs=[
            {"proof_type": "tracking", "submitter_id": "seller-1", "content_ref": f"TRK-{n}"}
            for n in range(proofs)
        ],
        buyer=_party("buyer-1", buyer_score),
        seller=_party("seller-1", seller_score),
        initiator_id=initiator,
        reason="not delivered",
    )


class TestHeuristicArbitrator:
    @pytest.mark.asyncio
    async def test_no_proofs_asks_for_more_info(self) -> None:
        record = await HeuristicArbitrator().assess(_bundle(proofs=0))
        assert record.decision is ArbitrationDecision.NEED_MORE_INFO
        assert record.confidence == 0.3

    @pytest.mark.asyncio
    async def test_equal_reputations_split(self) -> None:
        record = await HeuristicArbitrator().assess(_bundle())
        assert record.decision is ArbitrationDecision.RESOLVED_SPLIT
        assert record.confidence == 0.6
        assert record.compensation_amount is None

    @pytest.mark.asyncio
    async def test_trusted_seller_wins(self) -> None:
        record = await HeuristicArbitrator().assess(_bundle(buyer_score=0.2, seller_score=0.9))
        assert record.decision is ArbitrationDecision.RESOLVED_SELLER
        assert 0.7 <= record.confidence <= 0.9
        assert record.compensation_amount == Decimal("10.000000")

    @pytest.mark.asyncio
    async def test_trusted_buyer_wins(self) -> None:
        record = await HeuristicArbitrator().assess(
            _bundle(buyer_score=0.95, seller_score=0.1, initiator="seller-1")
        )
        assert record.decision is ArbitrationDecision.RESOLVED_BUYER
        assert record.details["proof_count"] == 1

    @pytest.mark.asyncio
    async def test_deterministic(self) -> None:
        arbitrator = HeuristicArbitrator()
        first = await arbitrator.assess(_bundle(buyer_score=0.2, seller_score=0.9))
        second = await arbitrator.assess(_bundle(buyer_score=0.2, seller_score=0.9))
        assert first == second
        assert first.assessment_id.startswith("heuristic:")


class TestMockArbitrator:
    @pytest.mark.asyncio
    async def test_default_decision(self) -> None:
        arbitrator = MockArbitrator()
        record = await arbitrator.assess(_bundle())
        assert record.decision is ArbitrationDecision.RESOLVED_BUYER
        assert record.confidence == 0.9
        assert len(arbitrator.bundles) == 1

    @pytest.mark.asyncio
    async def test_scripted_sequence(self) -> None:
        arbitrator = MockArbitrator(decision="resolved_seller")
        scripted = ArbitrationRecord(decision=ArbitrationDecision.RESOLVED_SPLIT, confidence=0.8)
        arbitrator.script(TimeoutError("slow"), scripted)

        with pytest.raises(TimeoutError):
            await arbitrator.assess(_bundle())
        assert await arbitrator.assess(_bundle()) is scripted
        fallback = await arbitrator.assess(_bundle())
        assert fallback.decision is ArbitrationDecision.RESOLVED_SELLER
