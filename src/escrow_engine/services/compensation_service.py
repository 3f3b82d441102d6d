"""Compensation Issuer — remedies owed to dispute winners.

Records are created ``pending`` inside the dispute-closing unit of work.
The settlement side reports each one back as ``processed`` or ``failed``;
both are terminal, and nothing here retries a failed payout.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from escrow_engine.domain.enums import CompensationStatus
from escrow_engine.domain.exceptions import (
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from escrow_engine.infrastructure.database.orm_models import CompensationRecord
from escrow_engine.logging_config import get_logger
from escrow_engine.services.base import BaseService, parse_uuid

if TYPE_CHECKING:
    from escrow_engine.domain.results import Outcome
    from escrow_engine.infrastructure.database.ledger import UnitOfWork

logger = get_logger(__name__)

DISPUTE_ENTITY = "dispute"


class CompensationService(BaseService):
    """Creates and settles compensation records."""

    async def issue(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: Decimal | None,
        reason: str,
        related_entity_id: str,
        related_entity_type: str = DISPUTE_ENTITY,
    ) -> CompensationRecord | None:
        """Create a pending record inside the caller's unit of work.

        Returns None for a zero/absent amount. Issuing twice for the same
        (entity, user) returns the existing record.
        """
        if amount is None or amount <= 0:
            return None
        existing = await uow.compensations.get_for_entity(
            related_entity_type, related_entity_id, user_id
        )
        if existing is not None:
            return existing
        record = await uow.compensations.create(
            CompensationRecord(
                user_id=user_id,
                amount=amount,
                reason=reason,
                related_entity_id=related_entity_id,
                related_entity_type=related_entity_type,
                status=CompensationStatus.PENDING.value,
            )
        )
        logger.info(
            "compensation.issued",
            compensation_id=str(record.id),
            user_id=user_id,
            amount=str(amount),
            related_entity_id=related_entity_id,
        )
        return record

    async def report_outcome(
        self,
        record_id: str,
        status: str,
        settlement_ref: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[CompensationRecord]:
        """Settlement callback: mark a pending record processed or failed."""
        rid = None

        async def snapshot() -> CompensationRecord | None:
            if rid is None:
                return None
            async with self._ledger.reader() as uow:
                return await uow.compensations.get_by_id(rid)

        async def call() -> CompensationRecord:
            nonlocal rid
            rid = parse_uuid(record_id, "compensation_id")
            try:
                outcome = CompensationStatus(status)
            except ValueError as err:
                raise ValidationError(f"Unknown compensation status: {status!r}") from err
            if outcome is CompensationStatus.PENDING:
                raise ValidationError("Outcome must be processed or failed")

            async with self._ledger.unit_of_work(f"compensation:{rid}") as uow:
                record = await uow.compensations.get_by_id(rid, for_update=True)
                if record is None:
                    raise EntityNotFoundError("Compensation record", str(rid))
                if record.status != CompensationStatus.PENDING:
                    raise InvalidTransitionError(record.status, outcome.value, "already reported")
                record.status = outcome.value
                record.settlement_ref = settlement_ref
                await uow.session.flush()

            log = logger.info if outcome is CompensationStatus.PROCESSED else logger.warning
            log(
                "compensation.reported",
                compensation_id=str(rid),
                status=outcome.value,
                settlement_ref=settlement_ref,
            )
            return record

        return await self._attempt(
            "report_compensation",
            call,
            snapshot=snapshot,
            actor_id="settlement",
            idempotency_key=idempotency_key,
        )

    async def list_compensations(self, user_id: str) -> Outcome[list[CompensationRecord]]:
        async def call() -> list[CompensationRecord]:
            async with self._ledger.reader() as uow:
                return await uow.compensations.list_by_user(user_id)

        return await self._attempt("list_compensations", call)
