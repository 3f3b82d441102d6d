"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the unit of work's responsibility, see
ledger.py).

``for_update=True`` adds ``SELECT ... FOR UPDATE`` so PostgreSQL holds a row
lock until the unit of work commits; SQLite ignores the clause.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from escrow_engine.domain.enums import DisputeStatus, EscrowStatus
from escrow_engine.infrastructure.database.orm_models import (
    CompensationRecord,
    EscrowDispute,
    EscrowEvent,
    EscrowProof,
    EscrowTransaction,
    TransactionRating,
    UserReputation,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_engine.domain.enums import EventType

# Timestamp column stamped when a transaction enters a status.
_STATUS_TIMESTAMPS: dict[EscrowStatus, str] = {
    EscrowStatus.FUNDED: "funded_at",
    EscrowStatus.EVIDENCE_SUBMITTED: "evidence_submitted_at",
    EscrowStatus.VERIFIED: "verified_at",
    EscrowStatus.DISPUTED: "disputed_at",
    EscrowStatus.COMPLETED: "completed_at",
    EscrowStatus.REFUNDED: "refunded_at",
    EscrowStatus.CANCELLED: "cancelled_at",
}


class TransactionRepository:
    """Data access for escrow transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: EscrowTransaction) -> EscrowTransaction:
        """Insert a new escrow transaction."""
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def get_by_id(
        self, transaction_id: uuid.UUID, for_update: bool = False
    ) -> EscrowTransaction | None:
        """Fetch a transaction by its UUID."""
        stmt = select(EscrowTransaction).where(EscrowTransaction.id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str, limit: int = 100) -> list[EscrowTransaction]:
        """Fetch transactions where the user is buyer or seller, newest first."""
        result = await self._session.execute(
            select(EscrowTransaction)
            .where(
                or_(
                    EscrowTransaction.buyer_id == user_id,
                    EscrowTransaction.seller_id == user_id,
                )
            )
            .order_by(EscrowTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_expired(self, now: datetime, limit: int = 100) -> list[EscrowTransaction]:
        """Non-terminal, non-disputed transactions whose expiry has passed."""
        live = [EscrowStatus.INITIATED.value] + [
            s.value
            for s in (
                EscrowStatus.FUNDED,
                EscrowStatus.EVIDENCE_SUBMITTED,
                EscrowStatus.VERIFIED,
            )
        ]
        result = await self._session.execute(
            select(EscrowTransaction)
            .where(
                EscrowTransaction.status.in_(live),
                EscrowTransaction.expires_at.is_not(None),
                EscrowTransaction.expires_at <= now,
            )
            .order_by(EscrowTransaction.expires_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_in_status_since(
        self,
        status: EscrowStatus,
        entered_before: datetime,
        limit: int = 100,
    ) -> list[EscrowTransaction]:
        """Transactions that entered ``status`` before ``entered_before``."""
        column = getattr(EscrowTransaction, _STATUS_TIMESTAMPS[status])
        result = await self._session.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.status == status.value, column <= entered_before)
            .order_by(column.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        transaction: EscrowTransaction,
        new_status: EscrowStatus,
        now: datetime | None = None,
    ) -> EscrowTransaction:
        """Update the status of a transaction (call AFTER state machine validation)."""
        now = now or datetime.now(UTC)
        transaction.status = new_status.value
        setattr(transaction, _STATUS_TIMESTAMPS[new_status], now)
        if new_status is EscrowStatus.COMPLETED:
            transaction.released_at = now
        await self._session.flush()
        return transaction


class ProofRepository:
    """Data access for delivery evidence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, proof: EscrowProof) -> EscrowProof:
        self._session.add(proof)
        await self._session.flush()
        return proof

    async def get_by_id(self, proof_id: uuid.UUID, for_update: bool = False) -> EscrowProof | None:
        stmt = select(EscrowProof).where(EscrowProof.id == proof_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_transaction(self, transaction_id: uuid.UUID) -> list[EscrowProof]:
        """Fetch all proofs for a transaction, oldest first."""
        result = await self._session.execute(
            select(EscrowProof)
            .where(EscrowProof.escrow_transaction_id == transaction_id)
            .order_by(EscrowProof.submitted_at.asc())
        )
        return list(result.scalars().all())

    async def count_by_transaction(self, transaction_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(EscrowProof)
            .where(EscrowProof.escrow_transaction_id == transaction_id)
        )
        return int(result.scalar_one())

    async def mark_verified(
        self,
        proof: EscrowProof,
        verifier_id: str,
        notes: str | None,
        now: datetime | None = None,
    ) -> EscrowProof:
        proof.verified = True
        proof.verified_by = verifier_id
        proof.verified_at = now or datetime.now(UTC)
        proof.verification_notes = notes
        await self._session.flush()
        return proof


class DisputeRepository:
    """Data access for disputes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: EscrowDispute) -> EscrowDispute:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(
        self, dispute_id: uuid.UUID, for_update: bool = False
    ) -> EscrowDispute | None:
        stmt = select(EscrowDispute).where(EscrowDispute.id == dispute_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_for_transaction(
        self, transaction_id: uuid.UUID, for_update: bool = False
    ) -> EscrowDispute | None:
        """Return the transaction's open (not CLOSED) dispute, if any."""
        stmt = select(EscrowDispute).where(
            EscrowDispute.escrow_transaction_id == transaction_id,
            EscrowDispute.status != DisputeStatus.CLOSED.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_transaction(self, transaction_id: uuid.UUID) -> list[EscrowDispute]:
        result = await self._session.execute(
            select(EscrowDispute)
            .where(EscrowDispute.escrow_transaction_id == transaction_id)
            .order_by(EscrowDispute.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_by_status(
        self,
        statuses: Iterable[DisputeStatus],
        updated_before: datetime | None = None,
        limit: int = 100,
    ) -> list[EscrowDispute]:
        """Fetch disputes in any of ``statuses``, least recently touched first."""
        stmt = select(EscrowDispute).where(
            EscrowDispute.status.in_([s.value for s in statuses])
        )
        if updated_before is not None:
            stmt = stmt.where(EscrowDispute.updated_at <= updated_before)
        result = await self._session.execute(
            stmt.order_by(EscrowDispute.updated_at.asc()).limit(limit)
        )
        return list(result.scalars().all())


class ReputationRepository:
    """Data access for user reputations (one row per user_id)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str, for_update: bool = False) -> UserReputation | None:
        stmt = select(UserReputation).where(UserReputation.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> UserReputation:
        """Upsert keyed by user_id.

        The insert runs in a savepoint so a concurrent creator's row wins
        without aborting the surrounding unit of work.
        """
        reputation = await self.get(user_id, for_update=True)
        if reputation is not None:
            return reputation
        try:
            async with self._session.begin_nested():
                reputation = UserReputation(user_id=user_id)
                self._session.add(reputation)
        except IntegrityError:
            reputation = await self.get(user_id, for_update=True)
            if reputation is None:
                raise
        return reputation

    async def list_by_user_ids(self, user_ids: Iterable[str]) -> list[UserReputation]:
        result = await self._session.execute(
            select(UserReputation).where(UserReputation.user_id.in_(list(user_ids)))
        )
        return list(result.scalars().all())


class RatingRepository:
    """Data access for transaction ratings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, rating: TransactionRating) -> TransactionRating:
        self._session.add(rating)
        await self._session.flush()
        return rating

    async def get(self, transaction_id: uuid.UUID, rater_id: str) -> TransactionRating | None:
        result = await self._session.execute(
            select(TransactionRating).where(
                TransactionRating.escrow_transaction_id == transaction_id,
                TransactionRating.rater_id == rater_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, rated_user_id: str) -> list[TransactionRating]:
        result = await self._session.execute(
            select(TransactionRating)
            .where(TransactionRating.rated_user_id == rated_user_id)
            .order_by(TransactionRating.created_at.desc())
        )
        return list(result.scalars().all())


class CompensationRepository:
    """Data access for compensation records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: CompensationRecord) -> CompensationRecord:
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_id(
        self, record_id: uuid.UUID, for_update: bool = False
    ) -> CompensationRecord | None:
        stmt = select(CompensationRecord).where(CompensationRecord.id == record_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_entity(
        self, entity_type: str, entity_id: str, user_id: str
    ) -> CompensationRecord | None:
        result = await self._session.execute(
            select(CompensationRecord).where(
                CompensationRecord.related_entity_type == entity_type,
                CompensationRecord.related_entity_id == entity_id,
                CompensationRecord.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[CompensationRecord]:
        result = await self._session.execute(
            select(CompensationRecord)
            .where(CompensationRecord.user_id == user_id)
            .order_by(CompensationRecord.created_at.desc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        transaction_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
        dispute_id: uuid.UUID | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            escrow_transaction_id=transaction_id,
            dispute_id=dispute_id,
            event_type=event_type.value,
            old_status=str(old_status) if old_status else None,
            new_status=str(new_status),
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def list_by_transaction(self, transaction_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for a transaction in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.escrow_transaction_id == transaction_id)
            .order_by(EscrowEvent.created_at.asc())
        )
        return list(result.scalars().all())
