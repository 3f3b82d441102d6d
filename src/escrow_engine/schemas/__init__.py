"""Pydantic API schemas."""

from escrow_engine.schemas.escrow import (
    CompensationOutcomeRequest,
    CompensationResponse,
    CreateEscrowRequest,
    DisputeResponse,
    ErrorResponse,
    EscrowEventResponse,
    EscrowResponse,
    HealthResponse,
    ManualResolutionRequest,
    OpenDisputeRequest,
    ProofResponse,
    RatingRequest,
    RatingResponse,
    ReputationResponse,
    SubmitProofRequest,
    TransactionStatusResponse,
    TransitionRequest,
    VerificationStatusRequest,
    VerifyProofRequest,
)

__all__ = [
    "CompensationOutcomeRequest",
    "CompensationResponse",
    "CreateEscrowRequest",
    "DisputeResponse",
    "ErrorResponse",
    "EscrowEventResponse",
    "EscrowResponse",
    "HealthResponse",
    "ManualResolutionRequest",
    "OpenDisputeRequest",
    "ProofResponse",
    "RatingRequest",
    "RatingResponse",
    "ReputationResponse",
    "SubmitProofRequest",
    "TransactionStatusResponse",
    "TransitionRequest",
    "VerificationStatusRequest",
    "VerifyProofRequest",
]
