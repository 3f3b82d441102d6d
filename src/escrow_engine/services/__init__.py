"""Application services — use case orchestration."""

from escrow_engine.services.compensation_service import CompensationService
from escrow_engine.services.dispute_service import DisputeService
from escrow_engine.services.engine import EscrowEngine, create_escrow_engine
from escrow_engine.services.escrow_service import EscrowService
from escrow_engine.services.evidence_service import EvidenceService
from escrow_engine.services.reputation_service import ReputationService

__all__ = [
    "CompensationService",
    "DisputeService",
    "EscrowEngine",
    "EscrowService",
    "EvidenceService",
    "ReputationService",
    "create_escrow_engine",
]
