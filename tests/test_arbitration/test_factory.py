"""Unit tests for the ArbitratorFactory."""

from __future__ import annotations

import pytest

from escrow_engine.arbitration import (
    ArbitratorFactory,
    HeuristicArbitrator,
    LLMArbitrator,
    MockArbitrator,
)
from escrow_engine.domain.collaborators import ArbitrationCollaborator


class TestArbitratorFactory:
    def test_create_heuristic(self) -> None:
        assert isinstance(ArbitratorFactory.create("heuristic"), HeuristicArbitrator)

    def test_create_llm(self) -> None:
        assert isinstance(ArbitratorFactory.create("llm"), LLMArbitrator)

    def test_create_mock(self) -> None:
        assert isinstance(ArbitratorFactory.create("mock"), MockArbitrator)

    def test_unknown_backend_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown arbitrator backend"):
            ArbitratorFactory.create("coin_flip")

    @pytest.mark.parametrize("backend", ["heuristic", "llm", "mock"])
    def test_backends_satisfy_protocol(self, backend: str) -> None:
        assert isinstance(ArbitratorFactory.create(backend), ArbitrationCollaborator)

    def test_get_supported_backends(self) -> None:
        assert sorted(ArbitratorFactory.get_supported_backends()) == ["heuristic", "llm", "mock"]
