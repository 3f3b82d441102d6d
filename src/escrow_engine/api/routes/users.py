"""Reputation, rating and compensation REST API routes.

Routes:
    GET    /api/v1/users/{user_id}/reputation      — Reputation snapshot
    PUT    /api/v1/users/{user_id}/verification    — Set verification status (operator)
    GET    /api/v1/users/{user_id}/ratings         — Ratings received
    GET    /api/v1/users/{user_id}/compensations   — Compensation records
    POST   /api/v1/escrow/{id}/ratings             — Rate the counterparty
    POST   /api/v1/compensations/{record_id}/outcome — Report a payout result
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
    CompensationOutcomeRequest,
    CompensationResponse,
    RatingRequest,
    RatingResponse,
    ReputationResponse,
    VerificationStatusRequest,
)
from escrow_engine.services.engine import EscrowEngine

router = APIRouter(prefix="/api/v1", tags=["Users"])


@router.get("/users/{user_id}/reputation", response_model=ReputationResponse)
async def get_reputation(
    user_id: str, engine: EscrowEngine = Depends(get_engine)
) -> ReputationResponse:
    return present(await engine.get_reputation(user_id), ReputationResponse)


@router.put("/users/{user_id}/verification", response_model=ReputationResponse)
async def set_verification_status(
    user_id: str,
    request: VerificationStatusRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
) -> ReputationResponse:
    outcome = await engine.set_verification_status(actor_id, user_id, request.status)
    return present(outcome, ReputationResponse)


@router.get("/users/{user_id}/ratings", response_model=list[RatingResponse])
async def list_ratings(
    user_id: str, engine: EscrowEngine = Depends(get_engine)
) -> list[RatingResponse]:
    return present_many(await engine.list_ratings(user_id), RatingResponse)


@router.get("/users/{user_id}/compensations", response_model=list[CompensationResponse])
async def list_compensations(
    user_id: str, engine: EscrowEngine = Depends(get_engine)
) -> list[CompensationResponse]:
    return present_many(await engine.list_compensations(user_id), CompensationResponse)


@router.post(
    "/escrow/{transaction_id}/ratings", response_model=RatingResponse, status_code=201
)
async def submit_rating(
    transaction_id: str,
    request: RatingRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> RatingResponse:
    outcome = await engine.submit_rating(
        actor_id,
        transaction_id,
        request.rated_user_id,
        request.rating,
        request.comment,
        idempotency_key,
    )
    return present(outcome, RatingResponse)


@router.post("/compensations/{record_id}/outcome", response_model=CompensationResponse)
async def report_compensation_outcome(
    record_id: str,
    request: CompensationOutcomeRequest,
    engine: EscrowEngine = Depends(get_engine),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> CompensationResponse:
    outcome = await engine.report_compensation_outcome(
        record_id, request.status.value, request.settlement_ref, idempotency_key
    )
    return present(outcome, CompensationResponse)
