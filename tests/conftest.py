"""Shared test fixtures for the escrow engine test suite.

Provides:
    - A file-backed SQLite ledger per test (aiosqlite)
    - An injectable clock so expiry and sweep windows can be stepped through
    - A scriptable MockArbitrator and a settlement rail that can be made to fail
    - fakeredis for the idempotency store
    - ``lifecycle``, which drives a transaction between buyer-1 and seller-1
      to a given status

Party ids used across the suite: buyer-1, seller-1 and ops-1 (an operator).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from fakeredis import aioredis as fake_aioredis

from escrow_engine.arbitration import MockArbitrator
from escrow_engine.config import Settings
from escrow_engine.infrastructure.database.engine import (
    build_engine,
    create_tables,
    make_session_factory,
)
from escrow_engine.services import create_escrow_engine
from escrow_engine.services.settlement_service import SimulatedSettlement

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from escrow_engine.domain.collaborators import (
        DepositConfirmation,
        SettlementReceipt,
        TransitionEvent,
    )
    from escrow_engine.infrastructure.database.orm_models import EscrowTransaction
    from escrow_engine.services.engine import EscrowEngine

BUYER = "buyer-1"
SELLER = "seller-1"
OPERATOR = "ops-1"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FlakySettlement(SimulatedSettlement):
    """Simulated rail whose operations can be made to fail a number of times."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, int] = {}

    def fail(self, operation: str, times: int = 1) -> None:
        self.failures[operation] = times

    def _maybe_fail(self, operation: str) -> None:
        remaining = self.failures.get(operation, 0)
        if remaining > 0:
            self.failures[operation] = remaining - 1
            raise ConnectionError(f"settlement rail down during {operation}")

    async def confirm_deposit(self, transaction_id: str) -> DepositConfirmation:
        self._maybe_fail("confirm_deposit")
        return await super().confirm_deposit(transaction_id)

    async def release_funds(
        self, transaction_id: str, recipient: str, amount: Decimal
    ) -> SettlementReceipt:
        self._maybe_fail("release_funds")
        return await super().release_funds(transaction_id, recipient, amount)

    async def refund(
        self, transaction_id: str, recipient: str, amount: Decimal
    ) -> SettlementReceipt:
        self._maybe_fail("refund")
        return await super().refund(transaction_id, recipient, amount)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[TransitionEvent] = []

    async def publish(self, event: TransitionEvent) -> None:
        self.events.append(event)


class Lifecycle:
    """Drives a BUYER/SELLER transaction forward, asserting each step succeeds."""

    def __init__(self, engine: EscrowEngine) -> None:
        self.engine = engine

    async def create(self, amount: str = "100", **options: object) -> EscrowTransaction:
        outcome = await self.engine.create_transaction(BUYER, BUYER, SELLER, amount, **options)
        assert outcome.ok, outcome.error
        return outcome.value

    async def funded(self, amount: str = "100", **options: object) -> EscrowTransaction:
        tx = await self.create(amount, **options)
        outcome = await self.engine.fund(str(tx.id), BUYER)
        assert outcome.ok, outcome.error
        return outcome.value

    async def evidenced(self, amount: str = "100", **options: object) -> EscrowTransaction:
        tx = await self.funded(amount, **options)
        outcome = await self.engine.submit_proof(
            str(tx.id), SELLER, "tracking", content_ref="TRK-1"
        )
        assert outcome.ok, outcome.error
        return (await self.engine.get_transaction(str(tx.id))).value

    async def completed(self, amount: str = "100", **options: object) -> EscrowTransaction:
        tx = await self.evidenced(amount, **options)
        for step in (self.engine.confirm_delivery, self.engine.release):
            outcome = await step(str(tx.id), BUYER)
            assert outcome.ok, outcome.error
        return outcome.value


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}",
        arbitrator_backend="mock",
        operator_ids=f"SYSTEM,{OPERATOR}",
        collaborator_timeout_seconds=2.0,
        collaborator_max_attempts=2,
        collaborator_backoff_min_seconds=0.0,
        collaborator_backoff_max_seconds=0.0,
        arbitration_max_failures=3,
        sweeper_enabled=False,
    )


@pytest.fixture
async def session_factory(
    settings: Settings,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    db_engine = build_engine(settings.database_url)
    await create_tables(db_engine)
    yield make_session_factory(db_engine)
    await db_engine.dispose()


@pytest.fixture
def arbitrator() -> MockArbitrator:
    return MockArbitrator()


@pytest.fixture
def settlement() -> FlakySettlement:
    return FlakySettlement()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def redis() -> fake_aioredis.FakeRedis:
    return fake_aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def engine(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    settlement: FlakySettlement,
    arbitrator: MockArbitrator,
    notifier: RecordingNotifier,
    redis: fake_aioredis.FakeRedis,
    clock: FakeClock,
) -> EscrowEngine:
    return create_escrow_engine(
        settings,
        session_factory,
        settlement=settlement,
        arbitrator=arbitrator,
        notifier=notifier,
        redis=redis,
        clock=clock,
    )


@pytest.fixture
def lifecycle(engine: EscrowEngine) -> Lifecycle:
    return Lifecycle(engine)
