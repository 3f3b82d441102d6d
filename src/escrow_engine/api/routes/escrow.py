"""Escrow transaction REST API routes.

These endpoints provide the HTTP interface for the transaction lifecycle
and its evidence. The MCP tools in mcp_server/tools.py call the same
EscrowEngine facade, ensuring consistency.

Routes:
    POST   /api/v1/escrow                       — Create a transaction
    GET    /api/v1/escrow/{id}                  — Get transaction details
    GET    /api/v1/escrow/{id}/status           — Status + allowed events
    GET    /api/v1/escrow/{id}/events           — Audit trail
    POST   /api/v1/escrow/{id}/transition       — Generic status change
    POST   /api/v1/escrow/{id}/fund             — Buyer funds (deposit confirmed)
    POST   /api/v1/escrow/{id}/confirm-delivery — Buyer confirms delivery
    POST   /api/v1/escrow/{id}/release          — Release funds to the seller
    POST   /api/v1/escrow/{id}/cancel           — Record cancel consent
    POST   /api/v1/escrow/{id}/proofs           — Attach delivery evidence
    GET    /api/v1/escrow/{id}/proofs           — List evidence
    POST   /api/v1/escrow/proofs/{proof_id}/verify — Verify a proof
    GET    /api/v1/escrow/user/{user_id}        — A user's transactions
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from escrow_engine.api.deps import (
    get_actor_id,
    get_engine,
    get_idempotency_key,
    present,
    present_many,
)
from escrow_engine.logging_config import get_logger
from escrow_engine.schemas.escrow import (
    CreateEscrowRequest,
    EscrowEventResponse,
    EscrowResponse,
    ProofResponse,
    SubmitProofRequest,
    TransactionStatusResponse,
    TransitionRequest,
    VerifyProofRequest,
)
from escrow_engine.services.engine import EscrowEngine

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=EscrowResponse,
    status_code=201,
    summary="Create a new escrow transaction",
)
async def create_escrow(
    request: CreateEscrowRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> EscrowResponse:
    """Create a transaction in INITIATED state."""
    outcome = await engine.create_transaction(
        actor_id,
        request.buyer_id,
        request.seller_id,
        request.amount,
        token_symbol=request.token_symbol,
        description=request.description,
        chain=request.chain,
        expires_at=request.expires_at,
        expires_in_days=request.expires_in_days,
        metadata=request.metadata,
        idempotency_key=idempotency_key,
    )
    return present(outcome, EscrowResponse)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get("/user/{user_id}", response_model=list[EscrowResponse])
async def list_user_transactions(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    engine: EscrowEngine = Depends(get_engine),
) -> list[EscrowResponse]:
    return present_many(await engine.list_user_transactions(user_id, limit), EscrowResponse)


@router.get("/{transaction_id}", response_model=EscrowResponse)
async def get_escrow(
    transaction_id: str, engine: EscrowEngine = Depends(get_engine)
) -> EscrowResponse:
    return present(await engine.get_transaction(transaction_id), EscrowResponse)


@router.get("/{transaction_id}/status", response_model=TransactionStatusResponse)
async def get_status(
    transaction_id: str, engine: EscrowEngine = Depends(get_engine)
) -> TransactionStatusResponse:
    """Lightweight status check with the events that can fire next."""
    return present(await engine.get_status(transaction_id), TransactionStatusResponse)


@router.get("/{transaction_id}/events", response_model=list[EscrowEventResponse])
async def get_events(
    transaction_id: str, engine: EscrowEngine = Depends(get_engine)
) -> list[EscrowEventResponse]:
    """Full audit trail for a transaction (append-only)."""
    return present_many(await engine.get_events(transaction_id), EscrowEventResponse)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/transition", response_model=EscrowResponse)
async def request_transition(
    transaction_id: str,
    request: TransitionRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> EscrowResponse:
    outcome = await engine.request_transition(
        transaction_id, actor_id, request.target_status, idempotency_key
    )
    return present(outcome, EscrowResponse)


@router.post("/{transaction_id}/fund", response_model=EscrowResponse)
async def fund_escrow(
    transaction_id: str,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> EscrowResponse:
    """Confirm the buyer's deposit with settlement and move to FUNDED."""
    return present(await engine.fund(transaction_id, actor_id, idempotency_key), EscrowResponse)


@router.post("/{transaction_id}/confirm-delivery", response_model=EscrowResponse)
async def confirm_delivery(
    transaction_id: str,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> EscrowResponse:
    outcome = await engine.confirm_delivery(transaction_id, actor_id, idempotency_key)
    return present(outcome, EscrowResponse)


@router.post("/{transaction_id}/release", response_model=EscrowResponse)
async def release_funds(
    transaction_id: str,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> EscrowResponse:
    outcome = await engine.release(transaction_id, actor_id, idempotency_key)
    return present(outcome, EscrowResponse)


@router.post("/{transaction_id}/cancel", response_model=EscrowResponse)
async def cancel_escrow(
    transaction_id: str,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> EscrowResponse:
    """Record the caller's consent; cancels once both parties have agreed."""
    outcome = await engine.cancel(transaction_id, actor_id, idempotency_key)
    return present(outcome, EscrowResponse)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/proofs", response_model=ProofResponse, status_code=201)
async def submit_proof(
    transaction_id: str,
    request: SubmitProofRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> ProofResponse:
    outcome = await engine.submit_proof(
        transaction_id,
        actor_id,
        request.proof_type.value,
        description=request.description,
        content_ref=request.content_ref,
        idempotency_key=idempotency_key,
    )
    return present(outcome, ProofResponse)


@router.get("/{transaction_id}/proofs", response_model=list[ProofResponse])
async def list_proofs(
    transaction_id: str, engine: EscrowEngine = Depends(get_engine)
) -> list[ProofResponse]:
    return present_many(await engine.list_proofs(transaction_id), ProofResponse)


@router.post("/proofs/{proof_id}/verify", response_model=ProofResponse)
async def verify_proof(
    proof_id: str,
    request: VerifyProofRequest,
    engine: EscrowEngine = Depends(get_engine),
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
) -> ProofResponse:
    outcome = await engine.verify_proof(proof_id, actor_id, request.notes, idempotency_key)
    return present(outcome, ProofResponse)
