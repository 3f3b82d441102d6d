"""HeuristicArbitrator — reputation and evidence weighted dispute decisions.

Decision flow:
    1. No proofs on the transaction -> need_more_info (confidence 0.3).
    2. Weigh each party's reputation score, discounting the initiator
       slightly (0.8) and crediting the respondent (1.2).
    3. A party whose weighted trust exceeds the other's by 1.5x wins, with
       confidence 0.7 rising towards 0.9 as the gap widens, plus a 5%
       compensation award.
    4. Otherwise split (confidence 0.6), which escalates under the default
       threshold.

Deterministic: the same bundle always yields the same record.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal

from escrow_engine.domain.collaborators import ArbitrationRecord, CaseBundle
from escrow_engine.domain.enums import ArbitrationDecision
from escrow_engine.logging_config import get_logger

logger = get_logger(__name__)

INITIATOR_WEIGHT = 0.8
RESPONDENT_WEIGHT = 1.2
DOMINANCE_RATIO = 1.5
COMPENSATION_RATE = Decimal("0.05")


class HeuristicArbitrator:
    """Decides disputes from the parties' reputations and the evidence count."""

    def __init__(self, compensation_rate: Decimal = COMPENSATION_RATE) -> None:
        self._compensation_rate = compensation_rate

    async def assess(self, bundle: CaseBundle) -> ArbitrationRecord:
        assessment_id = self._assessment_id(bundle)

        if not bundle.proofs:
            return ArbitrationRecord(
                decision=ArbitrationDecision.NEED_MORE_INFO,
                confidence=0.3,
                rationale="Insufficient evidence provided. Both parties should submit proofs.",
                assessment_id=assessment_id,
            )

        if bundle.initiated_by_buyer:
            buyer_weight, seller_weight = INITIATOR_WEIGHT, RESPONDENT_WEIGHT
        else:
            buyer_weight, seller_weight = RESPONDENT_WEIGHT, INITIATOR_WEIGHT
        buyer_trust = bundle.buyer.overall_score * buyer_weight
        seller_trust = bundle.seller.overall_score * seller_weight
        compensation = (bundle.amount * self._compensation_rate).quantize(Decimal("0.000001"))

        if buyer_trust > seller_trust * DOMINANCE_RATIO:
            decision = ArbitrationDecision.RESOLVED_BUYER
            confidence = 0.7 + min(0.2, (buyer_trust - seller_trust) / 10)
            rationale = "Reputation and evidence favour the buyer's account."
        elif seller_trust > buyer_trust * DOMINANCE_RATIO:
            decision = ArbitrationDecision.RESOLVED_SELLER
            confidence = 0.7 + min(0.2, (seller_trust - buyer_trust) / 10)
            rationale = "Reputation and evidence favour the seller's account."
        else:
            decision = ArbitrationDecision.RESOLVED_SPLIT
            confidence = 0.6
            rationale = "No clear fault; the amount should be split between the parties."
            compensation = None

        logger.info(
            "arbitration.heuristic.result",
            dispute_id=bundle.dispute_id,
            decision=decision.value,
            confidence=round(confidence, 4),
            buyer_trust=round(buyer_trust, 4),
            seller_trust=round(seller_trust, 4),
        )
        return ArbitrationRecord(
            decision=decision,
            confidence=round(confidence, 4),
            rationale=rationale,
            compensation_amount=compensation,
            assessment_id=assessment_id,
            details={
                "buyer_trust": buyer_trust,
                "seller_trust": seller_trust,
                "proof_count": len(bundle.proofs),
            },
        )

    @staticmethod
    def _assessment_id(bundle: CaseBundle) -> str:
        digest = hashlib.sha256(
            json.dumps(bundle.to_dict(), sort_keys=True, default=str).encode()
        ).hexdigest()
        return f"heuristic:{digest[:16]}"
