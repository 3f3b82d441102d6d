"""Arbitration collaborator implementations and factory.

Three backends:
    - HeuristicArbitrator:  Reputation and evidence weighted heuristic (default)
    - LLMArbitrator:        LLM judge via LiteLLM (Gemini/GPT-4o/Llama)
    - MockArbitrator:       Fixed, configurable decision for dry runs and tests

ArbitratorFactory creates the backend named by ``settings.arbitrator_backend``.
"""

from __future__ import annotations

from collections import deque
from decimal import Decimal

from escrow_engine.arbitration.heuristic import HeuristicArbitrator
from escrow_engine.arbitration.llm_judge import LLMArbitrator
from escrow_engine.domain.collaborators import (
    ArbitrationCollaborator,
    ArbitrationRecord,
    CaseBundle,
)
from escrow_engine.domain.enums import ArbitrationDecision


class MockArbitrator:
    """Instant arbitrator returning a configured decision.

    Queue specific records with ``script`` to drive a sequence of
    assessments; once the queue is empty the default decision is returned.
    An ``Exception`` in the queue is raised instead of returned.
    """

    def __init__(
        self,
        decision: ArbitrationDecision | str = ArbitrationDecision.RESOLVED_BUYER,
        confidence: float = 0.9,
        compensation_amount: Decimal | None = None,
        rationale: str = "Mock arbitration (dry-run mode)",
    ) -> None:
        self.decision = ArbitrationDecision(decision)
        self.confidence = confidence
        self.compensation_amount = compensation_amount
        self.rationale = rationale
        self.bundles: list[CaseBundle] = []
        self._script: deque[ArbitrationRecord | Exception] = deque()

    def script(self, *outcomes: ArbitrationRecord | Exception) -> None:
        self._script.extend(outcomes)

    async def assess(self, bundle: CaseBundle) -> ArbitrationRecord:
        self.bundles.append(bundle)
        if self._script:
            outcome = self._script.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return ArbitrationRecord(
            decision=self.decision,
            confidence=self.confidence,
            rationale=self.rationale,
            compensation_amount=self.compensation_amount,
            assessment_id=f"mock:{bundle.dispute_id}:{len(self.bundles)}",
        )


class ArbitratorFactory:
    """Creates an arbitration backend by name.

    Usage:
        arbitrator = ArbitratorFactory.create(settings.arbitrator_backend)
        record = await arbitrator.assess(bundle)
    """

    _registry: dict[str, type] = {
        "heuristic": HeuristicArbitrator,
        "llm": LLMArbitrator,
        "mock": MockArbitrator,
    }

    @classmethod
    def create(cls, backend: str) -> ArbitrationCollaborator:
        """Create an arbitrator instance.

        Raises:
            ValueError: If the backend is unknown.
        """
        arbitrator_class = cls._registry.get(backend)
        if arbitrator_class is None:
            raise ValueError(
                f"Unknown arbitrator backend: '{backend}'. "
                f"Valid backends: {list(cls._registry.keys())}"
            )
        return arbitrator_class()

    @classmethod
    def get_supported_backends(cls) -> list[str]:
        return list(cls._registry.keys())


__all__ = [
    "ArbitratorFactory",
    "HeuristicArbitrator",
    "LLMArbitrator",
    "MockArbitrator",
]
