"""Guarded state changes applied inside an open unit of work.

Each helper fires the state machine first (an illegal edge raises before
anything is touched), then mutates the row, appends the audit event and
queues the notification for after the commit.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from escrow_engine.domain.collaborators import TransitionEvent
from escrow_engine.domain.enums import DisputeStatus, EscrowStatus, EventType
from escrow_engine.domain.state_machine import DisputeStateMachine, EscrowStateMachine
from escrow_engine.infrastructure.database.orm_models import EscrowDispute

if TYPE_CHECKING:
    from escrow_engine.infrastructure.database.ledger import UnitOfWork
    from escrow_engine.infrastructure.database.orm_models import EscrowTransaction


async def apply_escrow_transition(
    uow: UnitOfWork,
    transaction: EscrowTransaction,
    event_name: str,
    event_type: EventType,
    actor_id: str,
    now: datetime,
    metadata: dict | None = None,
) -> EscrowStatus:
    """Move a transaction along one edge; returns the previous status."""
    old_status = EscrowStatus(transaction.status)
    new_status = EscrowStatus(EscrowStateMachine(transaction.status).fire(event_name))

    await uow.transactions.update_status(transaction, new_status, now)
    await uow.events.record(
        transaction_id=transaction.id,
        event_type=event_type,
        old_status=old_status,
        new_status=new_status,
        actor=actor_id,
        metadata=metadata,
    )
    uow.emit(
        TransitionEvent(
            transaction_id=str(transaction.id),
            from_status=old_status.value,
            to_status=new_status.value,
            actor_id=actor_id,
            timestamp=now,
        )
    )
    return old_status


async def apply_dispute_transition(
    uow: UnitOfWork,
    dispute: EscrowDispute,
    event_name: str,
    event_type: EventType,
    actor_id: str,
    now: datetime,
    metadata: dict | None = None,
) -> DisputeStatus:
    """Move a dispute along one edge; returns the previous status."""
    old_status = DisputeStatus(dispute.status)
    new_status = DisputeStatus(DisputeStateMachine(dispute.status).fire(event_name))

    dispute.status = new_status.value
    if new_status is DisputeStatus.EVIDENCE_REQUESTED:
        dispute.evidence_requested_at = now
    elif new_status.is_resolved:
        dispute.resolved_at = now
    elif new_status is DisputeStatus.CLOSED:
        dispute.closed_at = now
    await uow.session.flush()

    await uow.events.record(
        transaction_id=dispute.escrow_transaction_id,
        dispute_id=dispute.id,
        event_type=event_type,
        old_status=old_status,
        new_status=new_status,
        actor=actor_id,
        metadata=metadata,
    )
    uow.emit(
        TransitionEvent(
            transaction_id=str(dispute.escrow_transaction_id),
            from_status=old_status.value,
            to_status=new_status.value,
            actor_id=actor_id,
            timestamp=now,
            dispute_id=str(dispute.id),
        )
    )
    return old_status


async def create_dispute(
    uow: UnitOfWork,
    transaction: EscrowTransaction,
    initiator_id: str,
    reason: str,
    description: str | None,
    actor_id: str,
    now: datetime,
    event_name: str = "dispute_opened",
    event_type: EventType = EventType.DISPUTE_OPENED,
) -> EscrowDispute:
    """Move the transaction to DISPUTED and open its dispute in OPENED."""
    await apply_escrow_transition(
        uow,
        transaction,
        event_name,
        event_type,
        actor_id,
        now,
        metadata={"reason": reason, "initiator_id": initiator_id},
    )
    dispute = await uow.disputes.create(
        EscrowDispute(
            escrow_transaction_id=transaction.id,
            initiator_id=initiator_id,
            reason=reason,
            description=description,
            status=DisputeStatus.OPENED.value,
            created_at=now,
        )
    )
    await uow.events.record(
        transaction_id=transaction.id,
        dispute_id=dispute.id,
        event_type=EventType.DISPUTE_OPENED,
        old_status=None,
        new_status=DisputeStatus.OPENED,
        actor=actor_id,
        metadata={"reason": reason},
    )
    return dispute


def settlement_in_flight(transaction: EscrowTransaction, now: datetime, ttl_seconds: float) -> bool:
    """True while a release/refund call started less than ``ttl_seconds`` ago."""
    if not transaction.settlement_pending or transaction.settlement_pending_since is None:
        return False
    return now - transaction.settlement_pending_since < timedelta(seconds=ttl_seconds)


def mark_settlement(transaction: EscrowTransaction, operation: str | None, now: datetime) -> None:
    transaction.settlement_pending = operation
    transaction.settlement_pending_since = now if operation else None
