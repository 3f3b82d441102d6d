"""Unit tests for the LLMArbitrator.

Uses mocked LiteLLM responses to test parsing and fallback without
hitting a real LLM API.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from escrow_engine.arbitration.llm_judge import JudgeResponseError, LLMArbitrator
from escrow_engine.domain.collaborators import CaseBundle, PartyProfile
from escrow_engine.domain.enums import ArbitrationDecision


def _party(user_id: str) -> PartyProfile:
    return PartyProfile(
        user_id=user_id,
        overall_score=0.5,
        transaction_count=1,
        disputes_initiated=0,
        disputes_lost=0,
        trust_level="new",
    )


def _bundle() -> CaseBundle:
    return CaseBundle(
        dispute_id="d-1",
        transaction={"id": "t-1", "amount": "100", "status": "DISPUTED"},
        proofs=[
            {
                "proof_type": "photo",
                "submitter_id": "buyer-1",
                "description": "Cracked screen",
                "content_ref": "img://1",
                "verified": False,
            }
        ],
        buyer=_party("buyer-1"),
        seller=_party("seller-1"),
        initiator_id="buyer-1",
        reason="damaged",
        description="Arrived broken",
    )


def _mock_llm_response(content: str) -> MagicMock:
    """Create a mock LiteLLM completion response."""
    mock_resp = MagicMock()
    mock_resp.choices = [MagicMock()]
    mock_resp.choices[0].message.content = content
    return mock_resp


def _arbitrator() -> LLMArbitrator:
    return LLMArbitrator(model="test-model", fallback_models=["backup-model"])


class TestLLMArbitrator:
    @pytest.mark.asyncio
    async def test_buyer_decision(self) -> None:
        reply = "DECISION: BUYER\nCONFIDENCE: 0.88\nREFUND: NONE\nRATIONALE: Photo shows damage."

        with patch("escrow_engine.arbitration.llm_judge.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=_mock_llm_response(reply))
            record = await _arbitrator().assess(_bundle())

        assert record.decision is ArbitrationDecision.RESOLVED_BUYER
        assert record.confidence == 0.88
        assert record.compensation_amount is None
        assert record.details["model"] == "test-model"

        prompt = mock_litellm.acompletion.call_args.kwargs["messages"][1]["content"]
        assert "Cracked screen" in prompt
        assert "Opened by: buyer-1 (buyer)" in prompt

    @pytest.mark.asyncio
    async def test_falls_back_to_next_model(self) -> None:
        reply = "DECISION: SPLIT\nCONFIDENCE: 0.8\nREFUND: 40\nRATIONALE: Partly damaged."
        call = AsyncMock(side_effect=[RuntimeError("rate limited"), reply])

        with patch.object(LLMArbitrator, "_call_llm", call):
            record = await _arbitrator().assess(_bundle())

        assert record.decision is ArbitrationDecision.RESOLVED_SPLIT
        assert record.compensation_amount == Decimal("40")
        assert record.details["model"] == "backup-model"

    @pytest.mark.asyncio
    async def test_all_models_failing_raises(self) -> None:
        call = AsyncMock(side_effect=RuntimeError("provider down"))
        with patch.object(LLMArbitrator, "_call_llm", call), pytest.raises(RuntimeError):
            await _arbitrator().assess(_bundle())

    @pytest.mark.asyncio
    async def test_unparseable_reply_raises(self) -> None:
        call = AsyncMock(return_value="I think the buyer is probably right.")
        with patch.object(LLMArbitrator, "_call_llm", call), pytest.raises(JudgeResponseError):
            await _arbitrator().assess(_bundle())


class TestResponseParsing:
    """Test the _parse_response method directly."""

    def test_standard_format(self) -> None:
        decision, confidence, refund, rationale = LLMArbitrator._parse_response(
            "DECISION: SELLER\nCONFIDENCE: 0.9\nREFUND: NONE\nRATIONALE: Tracking shows delivery."
        )
        assert decision is ArbitrationDecision.RESOLVED_SELLER
        assert confidence == 0.9
        assert refund is None
        assert rationale == "Tracking shows delivery."

    def test_more_info(self) -> None:
        decision, _, _, _ = LLMArbitrator._parse_response(
            "decision: more info\nconfidence: 0.2\nrationale: Nothing to go on."
        )
        assert decision is ArbitrationDecision.NEED_MORE_INFO

    def test_confidence_clamped(self) -> None:
        _, confidence, _, _ = LLMArbitrator._parse_response(
            "DECISION: BUYER\nCONFIDENCE: 1.7\nRATIONALE: Sure."
        )
        assert confidence == 1.0

    def test_refund_ignored_unless_split(self) -> None:
        _, _, refund, _ = LLMArbitrator._parse_response(
            "DECISION: BUYER\nCONFIDENCE: 0.9\nREFUND: 10\nRATIONALE: ok"
        )
        assert refund is None

    def test_multiline_rationale(self) -> None:
        _, _, _, rationale = LLMArbitrator._parse_response(
            "DECISION: SPLIT\nCONFIDENCE: 0.8\nREFUND: 25\nRATIONALE: First line.\nSecond line."
        )
        assert rationale == "First line.\nSecond line."

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "-inf", "lots"])
    def test_non_finite_refund_dropped(self, amount: str) -> None:
        decision, _, refund, _ = LLMArbitrator._parse_response(
            f"DECISION: SPLIT\nCONFIDENCE: 0.8\nREFUND: {amount}\nRATIONALE: ok"
        )
        assert decision is ArbitrationDecision.RESOLVED_SPLIT
        assert refund is None

    @pytest.mark.parametrize(
        "reply",
        [
            "CONFIDENCE: 0.9\nRATIONALE: no decision",
            "DECISION: MAYBE\nCONFIDENCE: 0.9\nRATIONALE: unknown decision",
            "DECISION: BUYER\nCONFIDENCE: high\nRATIONALE: bad confidence",
            "DECISION: BUYER\nCONFIDENCE: nan\nRATIONALE: non-finite confidence",
            "DECISION: BUYER\nCONFIDENCE: inf\nRATIONALE: non-finite confidence",
        ],
    )
    def test_missing_fields_raise(self, reply: str) -> None:
        with pytest.raises(JudgeResponseError):
            LLMArbitrator._parse_response(reply)
