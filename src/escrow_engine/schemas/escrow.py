"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from escrow_engine.domain.enums import ArbitrationDecision, CompensationStatus, ProofType

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEscrowRequest(BaseModel):
    """Request body for opening a new escrow transaction."""

    buyer_id: str = Field(..., min_length=1, max_length=64, examples=["buyer-42"])
    seller_id: str = Field(..., min_length=1, max_length=64, examples=["seller-7"])
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=6,
        description="Amount held in escrow",
        examples=[100.0],
    )
    token_symbol: str = Field(default="USDC", min_length=1, max_length=16)
    description: str | None = Field(default=None, max_length=5000)
    chain: str | None = Field(default=None, max_length=32, examples=["base-sepolia"])
    expires_at: datetime | None = Field(
        default=None,
        description="Timezone-aware expiry; defaults to now + default_expiry_days",
    )
    expires_in_days: int | None = Field(default=None, ge=1, le=365)
    metadata: dict[str, Any] | None = None


class TransitionRequest(BaseModel):
    """Request body for a generic status change."""

    target_status: str = Field(
        ...,
        description="Requested EscrowStatus (e.g. FUNDED, VERIFIED, COMPLETED, CANCELLED)",
        examples=["FUNDED"],
    )


class SubmitProofRequest(BaseModel):
    """Request body for attaching delivery evidence."""

    proof_type: ProofType
    description: str | None = Field(default=None, max_length=5000)
    content_ref: str | None = Field(
        default=None,
        max_length=512,
        description="Pointer to externally stored content; required except for message/other",
    )


class VerifyProofRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class OpenDisputeRequest(BaseModel):
    """Request body for opening a dispute."""

    reason: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)


class ManualResolutionRequest(BaseModel):
    """Operator decision on an escalated dispute."""

    decision: ArbitrationDecision
    rationale: str = Field(default="", max_length=5000)
    compensation_amount: Decimal | None = Field(default=None, ge=0, decimal_places=6)


class RatingRequest(BaseModel):
    rated_user_id: str = Field(..., min_length=1, max_length=64)
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class VerificationStatusRequest(BaseModel):
    status: str = Field(..., examples=["verified"])


class CompensationOutcomeRequest(BaseModel):
    status: CompensationStatus
    settlement_ref: str | None = Field(default=None, max_length=128)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowResponse(BaseModel):
    """Response schema for an escrow transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: str
    seller_id: str
    amount: Decimal
    escrow_fee: Decimal
    token_symbol: str
    chain: str | None
    description: str | None
    status: str
    settlement_ref: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    cancel_consents: list[str] | None = None
    created_at: datetime
    funded_at: datetime | None
    evidence_submitted_at: datetime | None
    verified_at: datetime | None
    disputed_at: datetime | None
    completed_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    cancelled_at: datetime | None
    expires_at: datetime | None
    version: int


class ProofResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_transaction_id: uuid.UUID
    submitter_id: str
    proof_type: str
    description: str | None
    content_ref: str | None
    submitted_at: datetime
    verified: bool
    verified_by: str | None
    verified_at: datetime | None
    verification_notes: str | None


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_transaction_id: uuid.UUID
    initiator_id: str
    reason: str
    description: str | None
    status: str
    resolution: str | None
    decision_source: str | None
    confidence: float | None
    rationale: str | None
    compensation_amount: Decimal | None
    arbitration_assessment_id: str | None
    resolution_detail: dict | None
    arbitration_attempts: int
    last_arbitration_error: str | None
    created_at: datetime
    resolved_at: datetime | None
    closed_at: datetime | None


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_transaction_id: uuid.UUID
    dispute_id: uuid.UUID | None
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class ReputationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    overall_score: float
    transaction_count: int
    positive_ratings: int
    negative_ratings: int
    disputes_initiated: int
    disputes_lost: int
    strike_count: int
    cooldown_until: datetime | None
    trust_level: str
    verification_status: str


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_transaction_id: uuid.UUID
    rater_id: str
    rated_user_id: str
    rating: int
    comment: str | None
    flagged: bool
    created_at: datetime


class CompensationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    amount: Decimal
    reason: str
    related_entity_id: str | None
    related_entity_type: str | None
    status: str
    settlement_ref: str | None
    created_at: datetime


class TransactionStatusResponse(BaseModel):
    """Lightweight status check response."""

    transaction_id: uuid.UUID
    status: str
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )
    cancel_consents: list[str] = Field(default_factory=list)
    open_dispute_id: uuid.UUID | None = None
    expires_at: datetime | None = None


class ErrorResponse(BaseModel):
    """Body returned for every rejected operation."""

    error: str
    message: str
    current: dict | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
