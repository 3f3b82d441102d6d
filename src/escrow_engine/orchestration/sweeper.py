"""Background sweep — the engine's only actor-less work.

One pass (``EscrowSweeper.run_once``) walks, in order:

    1. expired transactions          -> CANCELLED or system dispute
    2. EVIDENCE_SUBMITTED past the auto-verify window  -> VERIFIED
    3. VERIFIED past the auto-release window           -> COMPLETED
    4. disputes stuck in OPENED / REVIEWING            -> re-submitted to arbitration
    5. disputes stuck in RESOLVED_*                    -> settlement + close retried
    6. disputes waiting too long on EVIDENCE_REQUESTED -> ESCALATED

Every item goes through the EscrowEngine, so the sweep takes the same
unit-of-work locks as request handlers. Collaborator failures are retried
with bounded exponential backoff (tenacity); an item that still fails is
left for the next pass.

The pass is scheduled by APScheduler's AsyncIOScheduler as a single
interval job with ``max_instances=1`` and ``coalesce=True``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from escrow_engine.domain.enums import SYSTEM_ACTOR, DisputeStatus, ErrorKind, EscrowStatus
from escrow_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from escrow_engine.domain.results import Outcome
    from escrow_engine.infrastructure.database.ledger import LedgerStore
    from escrow_engine.services.engine import EscrowEngine

logger = get_logger(__name__)

SWEEP_JOB_ID = "escrow_sweep"

_PENDING_ARBITRATION = (DisputeStatus.OPENED, DisputeStatus.REVIEWING)
_PENDING_SETTLEMENT = (
    DisputeStatus.RESOLVED_BUYER,
    DisputeStatus.RESOLVED_SELLER,
    DisputeStatus.RESOLVED_SPLIT,
)


@dataclass
class SweepReport:
    """Counts of what one pass did."""

    expired: int = 0
    auto_verified: int = 0
    auto_released: int = 0
    arbitrated: int = 0
    settled: int = 0
    escalated: int = 0
    failures: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "expired": self.expired,
            "auto_verified": self.auto_verified,
            "auto_released": self.auto_released,
            "arbitrated": self.arbitrated,
            "settled": self.settled,
            "escalated": self.escalated,
            "failures": len(self.failures),
        }


def _collaborator_down(outcome: Outcome) -> bool:
    return outcome.error_kind is ErrorKind.COLLABORATOR_UNAVAILABLE


class EscrowSweeper:
    """Runs the periodic expiry, auto-verify/release and dispute-retry pass."""

    def __init__(self, engine: EscrowEngine) -> None:
        self._engine = engine
        self._settings = engine.settings

    async def run_once(self) -> SweepReport:
        report = SweepReport()
        await self._expire(report)
        await self._auto_verify(report)
        await self._auto_release(report)
        await self._retry_arbitration(report)
        await self._retry_settlement(report)
        await self._escalate_stale_evidence_requests(report)
        logger.info("sweep.completed", **report.as_dict())
        return report

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _expire(self, report: SweepReport) -> None:
        async with self._ledger.reader() as uow:
            expired = await uow.transactions.list_expired(
                self._now(), limit=self._settings.sweep_batch_size
            )
        for tx in expired:
            outcome = await self._with_backoff(
                lambda tx_id=str(tx.id): self._engine.expire_transaction(tx_id)
            )
            if self._tally(outcome, f"expire:{tx.id}", report):
                report.expired += 1

    async def _auto_verify(self, report: SweepReport) -> None:
        cutoff = self._now() - timedelta(hours=self._settings.auto_verify_after_hours)
        async with self._ledger.reader() as uow:
            stale = await uow.transactions.list_in_status_since(
                EscrowStatus.EVIDENCE_SUBMITTED, cutoff, limit=self._settings.sweep_batch_size
            )
        for tx in stale:
            outcome = await self._engine.confirm_delivery(str(tx.id), SYSTEM_ACTOR)
            if self._tally(outcome, f"auto_verify:{tx.id}", report):
                report.auto_verified += 1

    async def _auto_release(self, report: SweepReport) -> None:
        cutoff = self._now() - timedelta(hours=self._settings.auto_release_after_hours)
        async with self._ledger.reader() as uow:
            stale = await uow.transactions.list_in_status_since(
                EscrowStatus.VERIFIED, cutoff, limit=self._settings.sweep_batch_size
            )
        for tx in stale:
            outcome = await self._with_backoff(
                lambda tx_id=str(tx.id): self._engine.release(tx_id, SYSTEM_ACTOR)
            )
            if self._tally(outcome, f"auto_release:{tx.id}", report):
                report.auto_released += 1

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def _retry_arbitration(self, report: SweepReport) -> None:
        async with self._ledger.reader() as uow:
            pending = await uow.disputes.list_by_status(
                _PENDING_ARBITRATION, limit=self._settings.sweep_batch_size
            )
        for dispute in pending:
            dispute_id = str(dispute.id)
            if dispute.arbitration_attempts >= self._settings.arbitration_max_failures:
                outcome = await self._engine.disputes.escalate_for_review(
                    dispute_id, "arbitration unavailable"
                )
                if self._tally(outcome, f"escalate:{dispute_id}", report):
                    report.escalated += 1
                continue
            outcome = await self._with_backoff(
                lambda did=dispute_id: self._engine.submit_for_arbitration(did)
            )
            if self._tally(outcome, f"arbitrate:{dispute_id}", report):
                report.arbitrated += 1

    async def _retry_settlement(self, report: SweepReport) -> None:
        async with self._ledger.reader() as uow:
            resolved = await uow.disputes.list_by_status(
                _PENDING_SETTLEMENT, limit=self._settings.sweep_batch_size
            )
        for dispute in resolved:
            dispute_id = str(dispute.id)
            outcome = await self._with_backoff(
                lambda did=dispute_id: self._engine.settle_dispute(did)
            )
            if (
                self._tally(outcome, f"settle:{dispute_id}", report)
                and outcome.value.status == DisputeStatus.CLOSED
            ):
                report.settled += 1

    async def _escalate_stale_evidence_requests(self, report: SweepReport) -> None:
        cutoff = self._now() - timedelta(hours=self._settings.evidence_request_timeout_hours)
        async with self._ledger.reader() as uow:
            waiting = await uow.disputes.list_by_status(
                (DisputeStatus.EVIDENCE_REQUESTED,), limit=self._settings.sweep_batch_size
            )
        for dispute in waiting:
            if dispute.evidence_requested_at is None or dispute.evidence_requested_at > cutoff:
                continue
            outcome = await self._engine.disputes.escalate_for_review(
                str(dispute.id), "evidence request timed out"
            )
            if self._tally(outcome, f"escalate:{dispute.id}", report):
                report.escalated += 1

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def _ledger(self) -> LedgerStore:
        return self._engine.ctx.ledger

    def _now(self) -> datetime:
        return self._engine.ctx.clock()

    async def _with_backoff(self, call: Callable[[], Awaitable[Outcome]]) -> Outcome:
        """Retry ``call`` while it reports COLLABORATOR_UNAVAILABLE."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.collaborator_max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.collaborator_backoff_min_seconds,
                min=self._settings.collaborator_backoff_min_seconds,
                max=self._settings.collaborator_backoff_max_seconds,
            ),
            retry=retry_if_result(_collaborator_down),
        )
        try:
            return await retrying(call)
        except RetryError as err:
            return err.last_attempt.result()

    @staticmethod
    def _tally(outcome: Outcome, item: str, report: SweepReport) -> bool:
        if outcome.ok:
            return True
        report.failures.append(item)
        logger.warning(
            "sweep.item_failed",
            item=item,
            error_kind=outcome.error_kind.value,
            error=outcome.error.message,
        )
        return False


def start_scheduler(sweeper: EscrowSweeper, interval_seconds: int) -> AsyncIOScheduler:
    """Start an AsyncIOScheduler running ``sweeper.run_once`` every interval."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        sweeper.run_once,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=SWEEP_JOB_ID,
        name="Escrow sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("sweep.scheduler_started", interval_seconds=interval_seconds)
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("sweep.scheduler_stopped")
