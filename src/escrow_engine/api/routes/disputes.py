"""Dispute REST API routes.

Routes:
    POST   /api/v1/escrow/{id}/disputes           — Open a dispute
    GET    /api/v1/escrow/{id}/disputes           — List a transaction's disputes
    GET    /api/v1/disputes/{dispute_id}          — Get a dispute
    POST   /api/v1/disputes/{dispute_id}/resolve  — Operator decision
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from escrow_engine.api.deps import (
    get_actor_id,
    get_engine,
    get_idempotency_key,
    present,
    present_many,
)
from escrow_engine.schemas.escrow import (
    DisputeResponse,
    ManualResolutionRequest,
    OpenDisputeRequest,
)
from escrow_engine.services.engine import EscrowEngine

router = APIRouter(prefix="/api/v1", tags=["Disputes"])


@router.post(
    "/escrow/{transaction_id}/disputes",
    response_model=DisputeResponse,
    status_code=201,
    summary="Open a dispute",
)
async def open_dispute(
    transaction_id: str,
    request: OpenDisputeRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> DisputeResponse:
    """Open a dispute; arbitration runs before the response is returned."""
    outcome = await engine.open_dispute(
        transaction_id, actor_id, request.reason, request.description, idempotency_key
    )
    return present(outcome, DisputeResponse)


@router.get("/escrow/{transaction_id}/disputes", response_model=list[DisputeResponse])
async def list_disputes(
    transaction_id: str, engine: EscrowEngine = Depends(get_engine)
) -> list[DisputeResponse]:
    return present_many(await engine.list_disputes(transaction_id), DisputeResponse)


@router.get("/disputes/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: str, engine: EscrowEngine = Depends(get_engine)
) -> DisputeResponse:
    return present(await engine.get_dispute(dispute_id), DisputeResponse)


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: str,
    request: ManualResolutionRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> DisputeResponse:
    """Manual decision by an operator (X-Actor-Id must be a configured operator)."""
    outcome = await engine.resolve_manually(
        dispute_id,
        actor_id,
        request.decision.value,
        request.rationale,
        request.compensation_amount,
        idempotency_key,
    )
    return present(outcome, DisputeResponse)
