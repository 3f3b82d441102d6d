"""Ledger Store — the atomic unit of work around every mutation.

A unit of work:
    1. acquires in-process locks for the given keys (sorted, FIFO per key),
    2. opens a session and a database transaction,
    3. hands the caller a ``UnitOfWork`` bundling every repository,
    4. commits on clean exit or rolls back on any exception.

Version conflicts (``StaleDataError`` from ``version_id_col``) surface as
``StaleWriteError``; constraint violations surface as
``IntegrityViolationError``. Nothing is ever written outside a unit of work.

Usage:
    async with ledger.unit_of_work(f"tx:{tx_id}") as uow:
        tx = await uow.transactions.get_by_id(tx_id, for_update=True)
        ...
    for event in uow.pending_events:   # publish after commit
        ...
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from escrow_engine.domain.exceptions import IntegrityViolationError, StaleWriteError
from escrow_engine.infrastructure.database.repositories import (
    CompensationRepository,
    DisputeRepository,
    EventRepository,
    ProofRepository,
    RatingRepository,
    ReputationRepository,
    TransactionRepository,
)
from escrow_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from escrow_engine.domain.collaborators import TransitionEvent

logger = get_logger(__name__)


def transaction_key(transaction_id: object) -> str:
    return f"tx:{transaction_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


class KeyedLockRegistry:
    """One asyncio.Lock per key, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        # Sorted acquisition keeps multi-key holders deadlock free.
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._refs[key] = self._refs.get(key, 0) + 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._drop_ref(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._drop_ref(key)

    def _drop_ref(self, key: str) -> None:
        self._refs[key] -= 1
        if self._refs[key] == 0:
            del self._refs[key]
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class UnitOfWork:
    """Repositories sharing one session and one database transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.transactions = TransactionRepository(session)
        self.proofs = ProofRepository(session)
        self.disputes = DisputeRepository(session)
        self.reputations = ReputationRepository(session)
        self.ratings = RatingRepository(session)
        self.compensations = CompensationRepository(session)
        self.events = EventRepository(session)
        # Published by the caller only after the commit succeeds.
        self.pending_events: list[TransitionEvent] = []

    def emit(self, event: TransitionEvent) -> None:
        self.pending_events.append(event)


class LedgerStore:
    """Owns the session factory and the per-entity lock registry."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks = KeyedLockRegistry()

    @asynccontextmanager
    async def unit_of_work(self, *lock_keys: str) -> AsyncIterator[UnitOfWork]:
        async with self._locks.hold(lock_keys):
            async with self._session_factory() as session:
                uow = UnitOfWork(session)
                try:
                    async with session.begin():
                        yield uow
                except StaleDataError as err:
                    logger.warning("ledger.stale_write", keys=lock_keys, error=str(err))
                    raise StaleWriteError(",".join(lock_keys) or "entity", str(err)) from err
                except IntegrityError as err:
                    logger.warning("ledger.integrity_violation", keys=lock_keys, error=str(err))
                    raise IntegrityViolationError(
                        f"Constraint violated: {err.orig}"
                    ) from err

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[UnitOfWork]:
        """Read-only session without locks. Never commits."""
        async with self._session_factory() as session:
            yield UnitOfWork(session)
