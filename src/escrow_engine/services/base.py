"""Shared plumbing for the application services.

Every public service method follows the same shape:

    return await self._attempt(
        "operation_name",
        lambda: self._do_operation(...),   # raises domain errors
        snapshot=lambda: self._load(...),  # fresh entity for rejections
        actor_id=actor_id,
        idempotency_key=idempotency_key,
    )

``_attempt`` converts raised EscrowEngineErrors into ``Outcome`` values,
retries a ``StaleWriteError`` once, and runs the idempotency protocol when
a key is supplied.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from redis.exceptions import RedisError

from escrow_engine.domain.exceptions import (
    CollaboratorUnavailableError,
    EscrowEngineError,
    InvalidTransitionError,
    StaleWriteError,
    TransactionNotFoundError,
    ValidationError,
)
from escrow_engine.domain.results import Outcome
from escrow_engine.infrastructure.database.orm_models import (
    CompensationRecord,
    EscrowDispute,
    EscrowProof,
    EscrowTransaction,
    TransactionRating,
)
from escrow_engine.logging_config import get_logger
from escrow_engine.services.transitions import settlement_in_flight

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from escrow_engine.config import Settings
    from escrow_engine.domain.authorization import AuthorizationGuard
    from escrow_engine.domain.collaborators import (
        ArbitrationCollaborator,
        SettlementCollaborator,
    )
    from escrow_engine.infrastructure.database.ledger import LedgerStore, UnitOfWork
    from escrow_engine.infrastructure.redis_client import RedisIdempotencyStore
    from escrow_engine.services.notification_service import NotificationDispatcher

logger = get_logger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_uuid(value: Any, field_name: str = "id") -> uuid.UUID:
    """Coerce caller input to a UUID, rejecting garbage as a validation error."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as err:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from err


@dataclass
class EngineContext:
    """Everything a service needs, wired once by ``build_engine``."""

    ledger: LedgerStore
    guard: AuthorizationGuard
    settings: Settings
    settlement: SettlementCollaborator
    arbitrator: ArbitrationCollaborator
    notifier: NotificationDispatcher
    idempotency: RedisIdempotencyStore | None = None
    clock: Callable[[], datetime] = field(default=utcnow)


# Entity types an idempotency reference can point at.
_REPLAYABLE = {
    "EscrowTransaction": lambda uow, eid: uow.transactions.get_by_id(eid),
    "EscrowProof": lambda uow, eid: uow.proofs.get_by_id(eid),
    "EscrowDispute": lambda uow, eid: uow.disputes.get_by_id(eid),
    "TransactionRating": lambda uow, eid: _get_rating(uow, eid),
    "CompensationRecord": lambda uow, eid: uow.compensations.get_by_id(eid),
}

_REFERENCE_TYPES = (
    EscrowTransaction,
    EscrowProof,
    EscrowDispute,
    TransactionRating,
    CompensationRecord,
)


async def _get_rating(uow: UnitOfWork, rating_id: uuid.UUID) -> TransactionRating | None:
    return await uow.session.get(TransactionRating, rating_id)


class BaseService:
    """Outcome conversion, stale-write retry, idempotency and collaborator calls."""

    def __init__(self, ctx: EngineContext) -> None:
        self._ctx = ctx
        self._ledger = ctx.ledger
        self._guard = ctx.guard
        self._settings = ctx.settings

    def _now(self) -> datetime:
        return self._ctx.clock()

    # ------------------------------------------------------------------
    # Outcome boundary
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        *,
        snapshot: Callable[[], Awaitable[Any]] | None = None,
        actor_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[T]:
        store = self._ctx.idempotency if idempotency_key else None
        claimed = False

        if store is not None:
            try:
                reference = await store.claim(operation, actor_id or "", idempotency_key)
            except EscrowEngineError as err:
                return await self._reject(operation, err, snapshot)
            except RedisError as err:
                unavailable = CollaboratorUnavailableError("idempotency", "claim", str(err))
                return await self._reject(operation, unavailable, snapshot)
            if reference is not None:
                replayed = await self._load_reference(reference)
                logger.info(
                    "idempotency.replayed",
                    operation=operation,
                    idempotency_key=idempotency_key,
                )
                return Outcome.success(replayed, replayed=True)
            claimed = True

        try:
            value = await self._with_stale_retry(call)
        except EscrowEngineError as err:
            if claimed:
                await store.release(operation, actor_id or "", idempotency_key)
            return await self._reject(operation, err, snapshot)
        except BaseException:
            if claimed:
                await store.release(operation, actor_id or "", idempotency_key)
            raise

        if claimed:
            await store.complete(
                operation, actor_id or "", idempotency_key, self._reference_of(value)
            )
        return Outcome.success(value)

    async def _with_stale_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except StaleWriteError as err:
            logger.info("ledger.stale_write_retry", error=err.message)
            return await call()

    async def _reject(
        self,
        operation: str,
        err: EscrowEngineError,
        snapshot: Callable[[], Awaitable[Any]] | None,
    ) -> Outcome[Any]:
        logger.info(
            "operation.rejected",
            operation=operation,
            error_kind=err.kind.value,
            error=err.message,
        )
        current = None
        if snapshot is not None:
            try:
                current = await snapshot()
            except EscrowEngineError:
                current = None
        return Outcome.failure(err, current=current)

    # ------------------------------------------------------------------
    # Idempotency references
    # ------------------------------------------------------------------

    @staticmethod
    def _reference_of(value: Any) -> dict:
        if isinstance(value, _REFERENCE_TYPES):
            return {"entity": type(value).__name__, "id": str(value.id)}
        return {"entity": None, "id": None}

    async def _load_reference(self, reference: dict) -> Any:
        loader = _REPLAYABLE.get(reference.get("entity") or "")
        if loader is None:
            return None
        async with self._ledger.reader() as uow:
            return await loader(uow, uuid.UUID(reference["id"]))

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def _call_collaborator(
        self,
        collaborator: str,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """Run a collaborator call under the configured timeout.

        Never call this while a unit of work is open.
        """
        timeout = self._settings.collaborator_timeout_seconds
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except EscrowEngineError:
            raise
        except TimeoutError as err:
            logger.warning(
                "collaborator.timeout",
                collaborator=collaborator,
                operation=operation,
                timeout_seconds=timeout,
            )
            raise CollaboratorUnavailableError(
                collaborator, operation, f"timed out after {timeout}s"
            ) from err
        except Exception as err:
            logger.warning(
                "collaborator.failed",
                collaborator=collaborator,
                operation=operation,
                error=str(err),
            )
            raise CollaboratorUnavailableError(collaborator, operation, str(err)) from err

    async def _publish(self, uow: UnitOfWork) -> None:
        """Hand a committed unit of work's events to the notifier."""
        await self._ctx.notifier.dispatch(uow.pending_events)

    # ------------------------------------------------------------------
    # Transaction loading
    # ------------------------------------------------------------------

    async def _read_transaction(self, transaction_id: uuid.UUID) -> EscrowTransaction:
        """Unlocked read, used for pre-checks before collaborator calls."""
        async with self._ledger.reader() as uow:
            tx = await uow.transactions.get_by_id(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return tx

    @staticmethod
    async def _require_transaction(
        uow: UnitOfWork, transaction_id: uuid.UUID
    ) -> EscrowTransaction:
        tx = await uow.transactions.get_by_id(transaction_id, for_update=True)
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return tx

    async def _transaction_snapshot(self, transaction_id: Any) -> EscrowTransaction | None:
        try:
            tx_id = parse_uuid(transaction_id, "transaction_id")
        except ValidationError:
            return None
        async with self._ledger.reader() as uow:
            return await uow.transactions.get_by_id(tx_id)

    def _ensure_no_settlement(self, transaction: EscrowTransaction, now: datetime) -> None:
        if settlement_in_flight(
            transaction, now, self._settings.settlement_marker_ttl_seconds
        ):
            raise InvalidTransitionError(
                transaction.status,
                transaction.settlement_pending or "settlement",
                "settlement already in progress",
            )
