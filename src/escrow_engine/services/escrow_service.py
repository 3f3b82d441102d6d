"""Escrow Service — core business logic for the transaction lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Authorization guard (who may ask for which edge)
    - Ledger store (atomic unit of work + audit trail)
    - Settlement collaborator (called outside any lock)

Both REST routes and MCP tools call into this service through the
EscrowEngine facade, ensuring a single source of truth for all business rules.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from escrow_engine.domain.collaborators import TransitionEvent
from escrow_engine.domain.enums import (
    SYSTEM_ACTOR,
    EscrowStatus,
    EventType,
)
from escrow_engine.domain.exceptions import (
    CollaboratorUnavailableError,
    ConflictingDisputeError,
    InvalidTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from escrow_engine.domain.state_machine import EscrowStateMachine, parse_status
from escrow_engine.infrastructure.database.ledger import transaction_key, user_key
from escrow_engine.infrastructure.database.orm_models import EscrowTransaction
from escrow_engine.logging_config import get_logger
from escrow_engine.services.base import BaseService, EngineContext, parse_uuid
from escrow_engine.services.transitions import (
    apply_escrow_transition,
    create_dispute,
    mark_settlement,
)

if TYPE_CHECKING:
    import uuid

    from escrow_engine.domain.results import Outcome
    from escrow_engine.infrastructure.database.orm_models import EscrowEvent
    from escrow_engine.services.reputation_service import ReputationService

logger = get_logger(__name__)

MICRO = Decimal("0.000001")
MAX_AMOUNT = Decimal("1000000000000")
EXPIRED_REASON = "expired"


def parse_amount(value: Any) -> Decimal:
    """Validate a caller-supplied amount: positive, finite, at most 6 decimals."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise ValidationError(f"Invalid amount: {value!r}") from err
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"Amount must be positive, got {value!r}")
    if amount >= MAX_AMOUNT:
        raise ValidationError(f"Amount too large: {value!r}")
    if amount != amount.quantize(MICRO):
        raise ValidationError(f"Amount has more than 6 decimal places: {value!r}")
    return amount.quantize(MICRO)


def compute_fee(amount: Decimal, rate: Decimal) -> Decimal:
    return (amount * rate).quantize(MICRO, rounding=ROUND_HALF_UP)


class EscrowService(BaseService):
    """Manages the escrow transaction lifecycle."""

    def __init__(self, ctx: EngineContext, reputation: ReputationService) -> None:
        super().__init__(ctx)
        self._reputation = reputation

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        actor_id: str,
        buyer_id: str,
        seller_id: str,
        amount: Decimal | str | int,
        token_symbol: str = "USDC",
        description: str | None = None,
        chain: str | None = None,
        expires_at: datetime | None = None,
        expires_in_days: int | None = None,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowTransaction]:
        """Create a new escrow transaction in INITIATED state."""

        async def call() -> EscrowTransaction:
            value = parse_amount(amount)
            now = self._now()
            expiry = self._resolve_expiry(now, expires_at, expires_in_days)
            fee = compute_fee(value, self._settings.escrow_fee_rate)

            async with self._ledger.unit_of_work(user_key(actor_id), user_key(buyer_id)) as uow:
                reputation = await uow.reputations.get(actor_id)
                buyer_reputation = (
                    reputation if buyer_id == actor_id else await uow.reputations.get(buyer_id)
                )
                self._guard.check_create_escrow(
                    actor_id, buyer_id, seller_id, reputation, now, buyer_reputation
                )
                tx = await uow.transactions.create(
                    EscrowTransaction(
                        seller_id=seller_id,
                        buyer_id=buyer_id,
                        amount=value,
                        token_symbol=token_symbol,
                        description=description,
                        chain=chain,
                        escrow_fee=fee,
                        status=EscrowStatus.INITIATED.value,
                        expires_at=expiry,
                        metadata_json=metadata,
                        cancel_consents=[],
                        created_at=now,
                    )
                )
                await uow.events.record(
                    transaction_id=tx.id,
                    event_type=EventType.TRANSACTION_CREATED,
                    old_status=None,
                    new_status=EscrowStatus.INITIATED,
                    actor=actor_id,
                    metadata={"amount": str(value), "escrow_fee": str(fee)},
                )
                uow.emit(
                    TransitionEvent(
                        transaction_id=str(tx.id),
                        from_status=None,
                        to_status=EscrowStatus.INITIATED.value,
                        actor_id=actor_id,
                        timestamp=now,
                    )
                )
            await self._publish(uow)

            logger.info(
                "escrow.created",
                transaction_id=str(tx.id),
                amount=str(value),
                fee=str(fee),
                buyer=buyer_id,
                seller=seller_id,
            )
            return tx

        return await self._attempt(
            "create_transaction",
            call,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        )

    def _resolve_expiry(
        self,
        now: datetime,
        expires_at: datetime | None,
        expires_in_days: int | None,
    ) -> datetime:
        if expires_at is not None:
            if expires_at.tzinfo is None:
                raise ValidationError("expires_at must be timezone-aware")
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future")
            return expires_at
        days = self._settings.default_expiry_days if expires_in_days is None else expires_in_days
        if days <= 0:
            raise ValidationError(f"expires_in_days must be positive, got {days}")
        return now + timedelta(days=days)

    # ------------------------------------------------------------------
    # Generic transition request
    # ------------------------------------------------------------------

    async def request_transition(
        self,
        transaction_id: str,
        actor_id: str,
        target_status: str,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowTransaction]:
        """Ask for ``current -> target_status``; routed to the matching operation."""

        async def call() -> EscrowTransaction:
            tx_id = parse_uuid(transaction_id, "transaction_id")
            target = parse_status(str(target_status))
            tx = await self._read_transaction(tx_id)
            self._guard.check_transition(actor_id, tx, target)

            if target is EscrowStatus.DISPUTED:
                raise InvalidTransitionError(
                    tx.status, target, "disputes are opened with open_dispute"
                )
            if tx.status == EscrowStatus.DISPUTED:
                raise InvalidTransitionError(
                    tx.status, target, "disputed transactions settle through arbitration"
                )

            handlers = {
                EscrowStatus.FUNDED: self._fund,
                EscrowStatus.EVIDENCE_SUBMITTED: self._mark_evidence_submitted,
                EscrowStatus.VERIFIED: self._confirm_delivery,
                EscrowStatus.COMPLETED: self._release,
                EscrowStatus.CANCELLED: self._cancel,
            }
            return await handlers[target](tx_id, actor_id)

        return await self._attempt(
            "request_transition",
            call,
            snapshot=lambda: self._transaction_snapshot(transaction_id),
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        )

    # ------------------------------------------------------------------
    # Named operations
    # ------------------------------------------------------------------

    async def fund(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self._named("fund", self._fund, transaction_id, actor_id, idempotency_key)

    async def mark_evidence_submitted(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self._named(
            "mark_evidence_submitted",
            self._mark_evidence_submitted,
            transaction_id,
            actor_id,
            idempotency_key,
        )

    async def confirm_delivery(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self._named(
            "confirm_delivery", self._confirm_delivery, transaction_id, actor_id, idempotency_key
        )

    async def release(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self._named(
            "release", self._release, transaction_id, actor_id, idempotency_key
        )

    async def cancel(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        """Record ``actor_id``'s consent to cancel; cancels once both parties agree."""
        return await self._named("cancel", self._cancel, transaction_id, actor_id, idempotency_key)

    async def _named(
        self,
        operation: str,
        handler: Any,
        transaction_id: str,
        actor_id: str,
        idempotency_key: str | None,
    ) -> Outcome[EscrowTransaction]:
        async def call() -> EscrowTransaction:
            return await handler(parse_uuid(transaction_id, "transaction_id"), actor_id)

        return await self._attempt(
            operation,
            call,
            snapshot=lambda: self._transaction_snapshot(transaction_id),
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        )

    # --- INITIATED -> FUNDED ---

    async def _fund(self, tx_id: uuid.UUID, actor_id: str) -> EscrowTransaction:
        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            self._guard.check_transition(actor_id, tx, EscrowStatus.FUNDED)
            self._ensure_no_settlement(tx, now)
            mark_settlement(tx, "deposit", now)
            await uow.session.flush()

        try:
            confirmation = await self._call_collaborator(
                "settlement",
                "confirm_deposit",
                lambda: self._ctx.settlement.confirm_deposit(str(tx_id)),
            )
        except CollaboratorUnavailableError:
            await self._clear_settlement_marker(tx_id)
            raise
        if not confirmation.confirmed:
            await self._clear_settlement_marker(tx_id)
            raise InvalidTransitionError(
                tx.status, EscrowStatus.FUNDED, "deposit not confirmed by settlement"
            )

        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            mark_settlement(tx, None, now)
            tx.settlement_ref = confirmation.settlement_ref
            await apply_escrow_transition(
                uow,
                tx,
                "deposit_confirmed",
                EventType.TRANSACTION_FUNDED,
                actor_id,
                now,
                metadata={"settlement_ref": confirmation.settlement_ref},
            )
        await self._publish(uow)

        logger.info(
            "escrow.funded",
            transaction_id=str(tx_id),
            settlement_ref=confirmation.settlement_ref,
        )
        return tx

    # --- FUNDED -> EVIDENCE_SUBMITTED ---

    async def _mark_evidence_submitted(
        self, tx_id: uuid.UUID, actor_id: str
    ) -> EscrowTransaction:
        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            self._guard.check_transition(actor_id, tx, EscrowStatus.EVIDENCE_SUBMITTED)
            if await uow.proofs.count_by_transaction(tx_id) == 0:
                raise InvalidTransitionError(
                    tx.status, EscrowStatus.EVIDENCE_SUBMITTED, "no proof submitted"
                )
            await apply_escrow_transition(
                uow, tx, "evidence_submitted", EventType.EVIDENCE_SUBMITTED, actor_id, now
            )
        await self._publish(uow)
        logger.info("escrow.evidence_submitted", transaction_id=str(tx_id))
        return tx

    # --- EVIDENCE_SUBMITTED -> VERIFIED ---

    async def _confirm_delivery(self, tx_id: uuid.UUID, actor_id: str) -> EscrowTransaction:
        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            self._guard.check_transition(actor_id, tx, EscrowStatus.VERIFIED)
            open_dispute = await uow.disputes.get_open_for_transaction(tx_id)
            if open_dispute is not None:
                raise ConflictingDisputeError(str(tx_id), str(open_dispute.id))
            await apply_escrow_transition(
                uow,
                tx,
                "delivery_confirmed",
                EventType.DELIVERY_VERIFIED,
                actor_id,
                now,
                metadata={"auto": actor_id == SYSTEM_ACTOR},
            )
        await self._publish(uow)
        logger.info("escrow.delivery_verified", transaction_id=str(tx_id), actor=actor_id)
        return tx

    # --- VERIFIED -> COMPLETED ---

    async def _release(self, tx_id: uuid.UUID, actor_id: str) -> EscrowTransaction:
        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            self._guard.check_transition(actor_id, tx, EscrowStatus.COMPLETED)
            if tx.status != EscrowStatus.VERIFIED:
                raise InvalidTransitionError(
                    tx.status, EscrowStatus.COMPLETED, "only verified deliveries are released"
                )
            self._ensure_no_settlement(tx, now)
            mark_settlement(tx, "release", now)
            await uow.session.flush()

        payout = tx.amount - tx.escrow_fee
        try:
            receipt = await self._call_collaborator(
                "settlement",
                "release_funds",
                lambda: self._ctx.settlement.release_funds(str(tx_id), tx.seller_id, payout),
            )
        except CollaboratorUnavailableError:
            await self._clear_settlement_marker(tx_id)
            raise

        now = self._now()
        async with self._ledger.unit_of_work(
            transaction_key(tx_id), user_key(tx.buyer_id), user_key(tx.seller_id)
        ) as uow:
            tx = await self._require_transaction(uow, tx_id)
            mark_settlement(tx, None, now)
            tx.settlement_ref = receipt.settlement_ref
            await apply_escrow_transition(
                uow,
                tx,
                "funds_released",
                EventType.FUNDS_RELEASED,
                actor_id,
                now,
                metadata={
                    "settlement_ref": receipt.settlement_ref,
                    "payout": str(payout),
                    "escrow_fee": str(tx.escrow_fee),
                },
            )
            await self._reputation.record_completion(uow, tx.buyer_id, tx.seller_id)
        await self._publish(uow)

        logger.info(
            "escrow.released",
            transaction_id=str(tx_id),
            payout=str(payout),
            settlement_ref=receipt.settlement_ref,
        )
        return tx

    # --- INITIATED | FUNDED -> CANCELLED (joint) ---

    async def _cancel(self, tx_id: uuid.UUID, actor_id: str) -> EscrowTransaction:
        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            self._guard.check_transition(actor_id, tx, EscrowStatus.CANCELLED)
            self._ensure_no_settlement(tx, now)
            if await uow.proofs.count_by_transaction(tx_id) > 0:
                raise InvalidTransitionError(
                    tx.status, EscrowStatus.CANCELLED, "evidence already submitted"
                )

            consents = sorted(set(tx.cancel_consents or []) | {actor_id})
            if consents != list(tx.cancel_consents or []):
                tx.cancel_consents = consents
                await uow.events.record(
                    transaction_id=tx.id,
                    event_type=EventType.CANCEL_REQUESTED,
                    old_status=tx.status,
                    new_status=tx.status,
                    actor=actor_id,
                    metadata={"consents": consents},
                )

            agreed = {tx.buyer_id, tx.seller_id} <= set(consents)
            needs_refund = agreed and tx.status == EscrowStatus.FUNDED
            if agreed and not needs_refund:
                await apply_escrow_transition(
                    uow, tx, "cancelled", EventType.TRANSACTION_CANCELLED, actor_id, now
                )
            elif needs_refund:
                mark_settlement(tx, "refund", now)
            await uow.session.flush()
        await self._publish(uow)

        if not agreed:
            logger.info("escrow.cancel_requested", transaction_id=str(tx_id), actor=actor_id)
            return tx
        if not needs_refund:
            logger.info("escrow.cancelled", transaction_id=str(tx_id))
            return tx

        try:
            receipt = await self._call_collaborator(
                "settlement",
                "refund",
                lambda: self._ctx.settlement.refund(str(tx_id), tx.buyer_id, tx.amount),
            )
        except CollaboratorUnavailableError:
            await self._clear_settlement_marker(tx_id)
            raise

        now = self._now()
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            mark_settlement(tx, None, now)
            tx.settlement_ref = receipt.settlement_ref
            await apply_escrow_transition(
                uow,
                tx,
                "cancelled",
                EventType.TRANSACTION_CANCELLED,
                actor_id,
                now,
                metadata={"settlement_ref": receipt.settlement_ref, "refund": str(tx.amount)},
            )
        await self._publish(uow)
        logger.info(
            "escrow.cancelled",
            transaction_id=str(tx_id),
            refunded=str(tx.amount),
            settlement_ref=receipt.settlement_ref,
        )
        return tx

    async def _clear_settlement_marker(self, tx_id: uuid.UUID) -> None:
        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            mark_settlement(tx, None, self._now())
            await uow.session.flush()

    # ------------------------------------------------------------------
    # Expiry (actor-less)
    # ------------------------------------------------------------------

    async def expire_transaction(self, transaction_id: str) -> Outcome[EscrowTransaction]:
        """Sweep one expired transaction.

        INITIATED is cancelled. A funded transaction moves to DISPUTED with a
        system-opened dispute (initiator recorded as the buyer) that the
        sweep then submits to arbitration. Anything else is left untouched.
        """

        async def call() -> EscrowTransaction:
            tx_id = parse_uuid(transaction_id, "transaction_id")
            now = self._now()
            async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
                tx = await self._require_transaction(uow, tx_id)
                status = EscrowStatus(tx.status)
                if (
                    tx.expires_at is None
                    or tx.expires_at > now
                    or status.is_terminal
                    or status is EscrowStatus.DISPUTED
                ):
                    return tx
                self._ensure_no_settlement(tx, now)

                if status is EscrowStatus.INITIATED:
                    await apply_escrow_transition(
                        uow,
                        tx,
                        "expired_unfunded",
                        EventType.TRANSACTION_EXPIRED,
                        SYSTEM_ACTOR,
                        now,
                        metadata={"expires_at": tx.expires_at.isoformat()},
                    )
                else:
                    dispute = await create_dispute(
                        uow,
                        tx,
                        initiator_id=tx.buyer_id,
                        reason=EXPIRED_REASON,
                        description="Escrow expired before completion",
                        actor_id=SYSTEM_ACTOR,
                        now=now,
                        event_name="expired_funded",
                        event_type=EventType.TRANSACTION_EXPIRED,
                    )
                    logger.info(
                        "escrow.expired_dispute_opened",
                        transaction_id=str(tx_id),
                        dispute_id=str(dispute.id),
                    )
            await self._publish(uow)
            logger.info("escrow.expired", transaction_id=str(tx_id), status=tx.status)
            return tx

        return await self._attempt(
            "expire_transaction",
            call,
            snapshot=lambda: self._transaction_snapshot(transaction_id),
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: str) -> Outcome[EscrowTransaction]:
        async def call() -> EscrowTransaction:
            return await self._read_transaction(parse_uuid(transaction_id, "transaction_id"))

        return await self._attempt("get_transaction", call)

    async def get_status(self, transaction_id: str) -> Outcome[dict]:
        """Get transaction status with allowed events."""

        async def call() -> dict:
            tx_id = parse_uuid(transaction_id, "transaction_id")
            async with self._ledger.reader() as uow:
                tx = await uow.transactions.get_by_id(tx_id)
                if tx is None:
                    raise TransactionNotFoundError(str(tx_id))
                open_dispute = await uow.disputes.get_open_for_transaction(tx_id)
            sm = EscrowStateMachine(current_status=tx.status)
            return {
                "transaction_id": str(tx.id),
                "status": tx.status,
                "allowed_events": sm.get_allowed_events(),
                "cancel_consents": list(tx.cancel_consents or []),
                "open_dispute_id": str(open_dispute.id) if open_dispute else None,
                "expires_at": tx.expires_at.isoformat() if tx.expires_at else None,
            }

        return await self._attempt("get_status", call)

    async def get_events(self, transaction_id: str) -> Outcome[list[EscrowEvent]]:
        """Get audit trail."""

        async def call() -> list[EscrowEvent]:
            tx_id = parse_uuid(transaction_id, "transaction_id")
            await self._read_transaction(tx_id)
            async with self._ledger.reader() as uow:
                return await uow.events.list_by_transaction(tx_id)

        return await self._attempt("get_events", call)

    async def list_user_transactions(
        self, user_id: str, limit: int = 100
    ) -> Outcome[list[EscrowTransaction]]:
        async def call() -> list[EscrowTransaction]:
            async with self._ledger.reader() as uow:
                return await uow.transactions.list_by_user(user_id, limit=limit)

        return await self._attempt("list_user_transactions", call)
