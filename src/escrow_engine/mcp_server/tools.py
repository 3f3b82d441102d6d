"""MCP Tool definitions for the escrow engine.

These tools expose the engine via the Model Context Protocol, allowing AI
agents to discover and call them programmatically.

Tools:
    - create_escrow: Create a new escrow transaction
    - fund_escrow: Confirm the buyer's deposit
    - submit_proof: Attach delivery evidence
    - confirm_delivery: Buyer accepts the delivery
    - release_funds: Release funds to the seller
    - check_status: Current status and the events that can fire next
    - raise_dispute: Open a dispute (arbitration runs immediately)
    - get_dispute: Dispute status and decision
    - get_reputation: A user's reputation snapshot

The MCP server is mounted into FastAPI at /mcp via app.mount().
Tools share the EscrowEngine wired during app startup (see ``bind_engine``).
Every tool returns a plain dict: the entity on success, or an error payload
with the entity's current state on rejection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from escrow_engine.api.deps import RejectedOperation, serialize_entity
from escrow_engine.logging_config import get_logger

if TYPE_CHECKING:
    from escrow_engine.domain.results import Outcome
    from escrow_engine.services.engine import EscrowEngine

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Escrow Engine",
    json_response=True,
)

_engine: EscrowEngine | None = None


def bind_engine(engine: EscrowEngine | None) -> None:
    """Attach (or detach, with None) the engine the tools operate on."""
    global _engine
    _engine = engine


def _get_engine() -> EscrowEngine:
    if _engine is None:
        raise RuntimeError("Escrow engine not initialized. Call bind_engine() first.")
    return _engine


def _render(tool: str, outcome: Outcome, message: str = "") -> dict:
    if not outcome.ok:
        logger.info("mcp.rejected", tool=tool, error_kind=outcome.error_kind.value)
        return RejectedOperation(outcome.error, outcome.current).body()
    payload: dict[str, Any] = serialize_entity(outcome.value) or {}
    if message:
        payload["message"] = message
    return payload


@mcp.tool()
async def create_escrow(
    actor_id: str,
    buyer_id: str,
    seller_id: str,
    amount: str,
    description: str = "",
    token_symbol: str = "USDC",
    expires_in_days: int | None = None,
) -> dict:
    """Create a new escrow transaction between a buyer and a seller.

    Args:
        actor_id: Your user id; must be the buyer or the seller.
        buyer_id: User id of the paying party.
        seller_id: User id of the delivering party.
        amount: Decimal amount as a string, e.g. "125.50".
        description: What is being bought.
        token_symbol: Currency or token of the amount.
        expires_in_days: Days until the transaction expires (default from config).

    Returns:
        Transaction details including the id you'll need for future calls.
    """
    outcome = await _get_engine().create_transaction(
        actor_id,
        buyer_id,
        seller_id,
        amount,
        description=description or None,
        token_symbol=token_symbol,
        expires_in_days=expires_in_days,
    )
    return _render("create_escrow", outcome, "Transaction created. Next step: fund it.")


@mcp.tool()
async def fund_escrow(transaction_id: str, actor_id: str) -> dict:
    """Confirm the buyer's deposit; the transaction moves to FUNDED.

    Args:
        transaction_id: UUID of the transaction.
        actor_id: The buyer's user id.
    """
    outcome = await _get_engine().fund(transaction_id, actor_id)
    return _render("fund_escrow", outcome, "Funds held. The seller can now deliver.")


@mcp.tool()
async def submit_proof(
    transaction_id: str,
    actor_id: str,
    proof_type: str,
    content_ref: str = "",
    description: str = "",
) -> dict:
    """Attach delivery evidence to a funded transaction.

    Args:
        transaction_id: UUID of the transaction.
        actor_id: Your user id (buyer or seller).
        proof_type: One of 'photo', 'document', 'tracking',
            'delivery_confirmation', 'message' or 'other'.
        content_ref: Tracking number, document hash or storage URL.
        description: Free-text note for the counterparty.
    """
    outcome = await _get_engine().submit_proof(
        transaction_id,
        actor_id,
        proof_type,
        description=description or None,
        content_ref=content_ref or None,
    )
    return _render("submit_proof", outcome)


@mcp.tool()
async def confirm_delivery(transaction_id: str, actor_id: str) -> dict:
    """Buyer confirms the delivery; the transaction moves to VERIFIED."""
    outcome = await _get_engine().confirm_delivery(transaction_id, actor_id)
    return _render("confirm_delivery", outcome)


@mcp.tool()
async def release_funds(transaction_id: str, actor_id: str) -> dict:
    """Release held funds (minus the fee) to the seller."""
    outcome = await _get_engine().release(transaction_id, actor_id)
    return _render("release_funds", outcome)


@mcp.tool()
async def check_status(transaction_id: str) -> dict:
    """Check the current status of a transaction.

    Returns:
        Status, amounts, open dispute (if any) and the events allowed next.
    """
    return _render("check_status", await _get_engine().get_status(transaction_id))


@mcp.tool()
async def raise_dispute(
    transaction_id: str,
    actor_id: str,
    reason: str,
    description: str = "",
) -> dict:
    """Open a dispute against a funded transaction.

    The dispute is submitted to arbitration straight away; the returned
    status shows whether it was resolved, escalated or needs more evidence.

    Args:
        transaction_id: UUID of the transaction.
        actor_id: Your user id (buyer or seller).
        reason: Short reason, e.g. "item not received".
        description: Longer account of what went wrong.
    """
    outcome = await _get_engine().open_dispute(
        transaction_id, actor_id, reason, description or None
    )
    return _render("raise_dispute", outcome)


@mcp.tool()
async def get_dispute(dispute_id: str) -> dict:
    """Dispute status, decision and split amounts."""
    return _render("get_dispute", await _get_engine().get_dispute(dispute_id))


@mcp.tool()
async def get_reputation(user_id: str) -> dict:
    """A user's reputation score, tier, counters and cooldown."""
    return _render("get_reputation", await _get_engine().get_reputation(user_id))
