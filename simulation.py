#!/usr/bin/env python3
"""Escrow Engine — End-to-End Simulation.

Drives the engine through five scenarios with BuyerBot and SellerBot agents:

    Scenario A: Funding
        - Buyer creates a 100 USD escrow -> INITIATED
        - Seller tries to submit a proof before funding -> InvalidTransition
        - Buyer funds -> FUNDED

    Scenario B: Happy Path
        - Seller submits tracking proof -> EVIDENCE_SUBMITTED
        - Buyer confirms -> VERIFIED, releases -> COMPLETED
        - Buyer rates seller 5 -> seller score rises

    Scenario C: Confident Dispute
        - Buyer disputes "item not as described"
        - Arbitration: resolved_buyer @ 0.92 -> RESOLVED_BUYER -> CLOSED
        - Transaction DISPUTED -> REFUNDED, seller disputes_lost + 1

    Scenario D: Escalated Dispute
        - Arbitration confidence 0.4 -> ESCALATED, transaction stays DISPUTED
        - Operator resolves manually -> CLOSED

    Scenario E: Expiry Sweep
        - An unfunded escrow passes its expiry
        - The sweep cancels it without any actor call

Usage:
    # Option A: Against the configured DATABASE_URL (e.g. PostgreSQL via Docker):
    docker compose up -d
    uv run python simulation.py

    # Option B: Without Docker (SQLite in-memory):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario C
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from escrow_engine.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from escrow_engine.arbitration import MockArbitrator  # noqa: E402
from escrow_engine.config import get_settings  # noqa: E402
from escrow_engine.domain.collaborators import ArbitrationRecord  # noqa: E402
from escrow_engine.domain.enums import ArbitrationDecision  # noqa: E402
from escrow_engine.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    create_tables,
    make_session_factory,
)
from escrow_engine.orchestration.sweeper import EscrowSweeper  # noqa: E402
from escrow_engine.services import create_escrow_engine  # noqa: E402

# Module-level state
_db_engine = None
_session_factory = None

OPERATOR = "SYSTEM"


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize the database engine and create tables."""
    global _db_engine, _session_factory

    url = "sqlite+aiosqlite:///:memory:" if use_sqlite else get_settings().database_url
    _db_engine = build_engine(url)
    await create_tables(_db_engine)
    _session_factory = make_session_factory(_db_engine)
    logger.info("database.initialized", dialect=_db_engine.dialect.name)


async def shutdown_database() -> None:
    """Close database connections."""
    global _db_engine, _session_factory

    if _db_engine is not None:
        await _db_engine.dispose()
        _db_engine = None
        _session_factory = None


class SimulationClock:
    """Wall clock that scenarios can push forward."""

    def __init__(self) -> None:
        self.offset = timedelta()

    def __call__(self) -> datetime:
        return datetime.now(UTC) + self.offset

    def advance(self, **delta: float) -> None:
        self.offset += timedelta(**delta)


def new_engine(arbitrator: MockArbitrator | None = None, clock: SimulationClock | None = None):  # noqa: ANN201
    """A fresh EscrowEngine on the shared database, with its own arbitrator and clock."""
    return create_escrow_engine(
        get_settings(),
        _session_factory,
        arbitrator=arbitrator or MockArbitrator(),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class Party:
    engine: Any
    user_id: str
    log_prefix: str = field(default="", repr=False)

    def _log(self, message: str, **kw: Any) -> None:
        logger.info(f"{self.log_prefix}: {message}", **kw)


@dataclass
class BuyerBot(Party):
    """Simulated buyer that opens, funds, confirms and disputes escrows."""

    user_id: str = "buyer-bot"
    log_prefix: str = "🔵 BUYER"

    async def create_escrow(self, seller: SellerBot, amount: str, **options: Any) -> str:
        outcome = await self.engine.create_transaction(
            self.user_id, self.user_id, seller.user_id, amount, **options
        )
        tx = outcome.unwrap()
        self._log("Escrow created", transaction_id=str(tx.id), amount=amount)
        return str(tx.id)

    async def fund(self, transaction_id: str) -> None:
        tx = (await self.engine.fund(transaction_id, self.user_id)).unwrap()
        self._log("Escrow funded", transaction_id=transaction_id, status=tx.status)

    async def confirm_and_release(self, transaction_id: str) -> None:
        (await self.engine.confirm_delivery(transaction_id, self.user_id)).unwrap()
        tx = (await self.engine.release(transaction_id, self.user_id)).unwrap()
        self._log("Funds released", transaction_id=transaction_id, status=tx.status)

    async def rate(self, transaction_id: str, seller: SellerBot, rating: int) -> None:
        (
            await self.engine.submit_rating(
                self.user_id, transaction_id, seller.user_id, rating, "Smooth trade"
            )
        ).unwrap()
        self._log("Seller rated", rating=rating)

    async def raise_dispute(self, transaction_id: str, reason: str) -> Any:
        dispute = (await self.engine.open_dispute(transaction_id, self.user_id, reason)).unwrap()
        self._log("Dispute raised", dispute_id=str(dispute.id), status=dispute.status)
        return dispute


@dataclass
class SellerBot(Party):
    """Simulated seller that ships goods and submits delivery evidence."""

    user_id: str = "seller-bot"
    log_prefix: str = "🟢 SELLER"

    async def submit_tracking(self, transaction_id: str, tracking: str) -> Any:
        outcome = await self.engine.submit_proof(
            transaction_id, self.user_id, "tracking", "Parcel shipped", tracking
        )
        if outcome.ok:
            self._log("Proof submitted", proof_id=str(outcome.value.id))
        else:
            self._log("Proof REJECTED ❌", error_kind=outcome.error_kind.value)
        return outcome


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_status(engine: Any, transaction_id: str) -> str:
    status = (await engine.get_status(transaction_id)).unwrap()
    print(f"  Status: {status['status']}  (allowed: {', '.join(status['allowed_events']) or '-'})")
    return status["status"]


async def print_reputation(engine: Any, user_id: str) -> None:
    rep = (await engine.get_reputation(user_id)).unwrap()
    print(
        f"  {user_id}: score={rep.overall_score:.3f} trust={rep.trust_level} "
        f"+{rep.positive_ratings}/-{rep.negative_ratings} lost={rep.disputes_lost}"
    )


async def print_audit_trail(engine: Any, transaction_id: str) -> None:
    """Print the full audit trail for a transaction."""
    events = (await engine.get_events(transaction_id)).unwrap()
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "—"
        print(f"    {i}. [{evt.event_type}] {old} → {evt.new_status} (by {evt.actor})")
    print()


def _record(decision: ArbitrationDecision, confidence: float, rationale: str) -> ArbitrationRecord:
    return ArbitrationRecord(decision=decision, confidence=confidence, rationale=rationale)


# ===========================================================================
# Scenario A: Funding
# ===========================================================================
async def scenario_a_funding() -> None:
    banner("SCENARIO A: Funding — proofs are refused until funds are held")
    engine = new_engine()
    buyer, seller = BuyerBot(engine, "buyer-a"), SellerBot(engine, "seller-a")

    section("Step 1: Buyer creates a 100 USD escrow")
    tx_id = await buyer.create_escrow(seller, "100", token_symbol="USD")
    await print_status(engine, tx_id)

    section("Step 2: Seller submits a proof too early")
    outcome = await seller.submit_tracking(tx_id, "TRK-EARLY")
    assert not outcome.ok and outcome.error_kind.value == "INVALID_TRANSITION"
    print(f"  ✅ Rejected with {outcome.error_kind.value}")

    section("Step 3: Buyer funds")
    await buyer.fund(tx_id)
    assert await print_status(engine, tx_id) == "FUNDED"
    await print_audit_trail(engine, tx_id)


# ===========================================================================
# Scenario B: Happy Path
# ===========================================================================
async def scenario_b_happy_path() -> None:
    banner("SCENARIO B: Happy Path — evidence, confirmation, release, rating")
    engine = new_engine()
    buyer, seller = BuyerBot(engine, "buyer-b"), SellerBot(engine, "seller-b")

    tx_id = await buyer.create_escrow(seller, "100")
    await buyer.fund(tx_id)

    section("Step 1: Seller ships and submits tracking")
    await seller.submit_tracking(tx_id, "TRK-1001")
    await print_status(engine, tx_id)

    section("Step 2: Buyer confirms delivery and releases funds")
    await buyer.confirm_and_release(tx_id)
    assert await print_status(engine, tx_id) == "COMPLETED"

    section("Step 3: Buyer rates the seller")
    await print_reputation(engine, seller.user_id)
    await buyer.rate(tx_id, seller, 5)
    await print_reputation(engine, seller.user_id)
    await print_audit_trail(engine, tx_id)


# ===========================================================================
# Scenario C: Confident dispute
# ===========================================================================
async def scenario_c_dispute_refund() -> None:
    banner("SCENARIO C: Dispute — confident arbitration refunds the buyer")
    arbitrator = MockArbitrator()
    arbitrator.script(
        _record(ArbitrationDecision.RESOLVED_BUYER, 0.92, "Photos contradict the listing.")
    )
    engine = new_engine(arbitrator)
    buyer, seller = BuyerBot(engine, "buyer-c"), SellerBot(engine, "seller-c")

    tx_id = await buyer.create_escrow(seller, "100")
    await buyer.fund(tx_id)
    await seller.submit_tracking(tx_id, "TRK-2002")

    section("Step 1: Buyer disputes")
    dispute = await buyer.raise_dispute(tx_id, "item not as described")
    print(f"  Dispute: {dispute.status} ({dispute.resolution} @ {dispute.confidence})")
    assert await print_status(engine, tx_id) == "REFUNDED"

    section("Step 2: Reputation after the dispute")
    await print_reputation(engine, seller.user_id)
    await print_audit_trail(engine, tx_id)


# ===========================================================================
# Scenario D: Escalated dispute
# ===========================================================================
async def scenario_d_escalation() -> None:
    banner("SCENARIO D: Dispute — low confidence escalates to an operator")
    arbitrator = MockArbitrator()
    arbitrator.script(_record(ArbitrationDecision.RESOLVED_SELLER, 0.4, "Evidence is thin."))
    engine = new_engine(arbitrator)
    buyer, seller = BuyerBot(engine, "buyer-d"), SellerBot(engine, "seller-d")

    tx_id = await buyer.create_escrow(seller, "250")
    await buyer.fund(tx_id)
    await seller.submit_tracking(tx_id, "TRK-3003")

    section("Step 1: Buyer disputes; arbitration is unsure")
    dispute = await buyer.raise_dispute(tx_id, "never arrived")
    assert dispute.status == "ESCALATED"
    assert await print_status(engine, tx_id) == "DISPUTED"

    section("Step 2: Operator decides for the seller")
    resolved = (
        await engine.resolve_manually(
            str(dispute.id), OPERATOR, "resolved_seller", "Carrier confirms delivery."
        )
    ).unwrap()
    print(f"  Dispute: {resolved.status} (source: {resolved.decision_source})")
    await print_status(engine, tx_id)
    await print_audit_trail(engine, tx_id)


# ===========================================================================
# Scenario E: Expiry sweep
# ===========================================================================
async def scenario_e_expiry() -> None:
    banner("SCENARIO E: Expiry — the sweep cancels an unfunded escrow")
    clock = SimulationClock()
    engine = new_engine(clock=clock)
    buyer, seller = BuyerBot(engine, "buyer-e"), SellerBot(engine, "seller-e")

    tx_id = await buyer.create_escrow(seller, "40", expires_in_days=1)
    await print_status(engine, tx_id)

    section("Step 1: Two days pass; the sweep runs")
    clock.advance(days=2)
    report = await EscrowSweeper(engine).run_once()
    print(f"  Sweep: {report.as_dict()}")
    assert await print_status(engine, tx_id) == "CANCELLED"
    await print_audit_trail(engine, tx_id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    "A": scenario_a_funding,
    "B": scenario_b_happy_path,
    "C": scenario_c_dispute_refund,
    "D": scenario_d_escalation,
    "E": scenario_e_expiry,
}


async def run(scenarios: list[str], use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "🚀" * 35)
        print("  ESCROW ENGINE — SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'configured DATABASE_URL'}")
        print("🚀" * 35 + "\n")

        for name in scenarios:
            await SCENARIOS[name]()

        print("\n" + "=" * 70)
        print(f"  ✅ SCENARIOS {', '.join(scenarios)} COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Escrow Engine Simulation")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        type=str.upper,
        default=None,
        help="Run a specific scenario (A-E). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database (no Docker needed).",
    )
    args = parser.parse_args()

    selected = [args.scenario] if args.scenario else list(SCENARIOS)
    asyncio.run(run(selected, use_sqlite=args.sqlite))
