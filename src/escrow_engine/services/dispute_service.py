"""Dispute Service — the dispute sub-lifecycle and its settlement.

A dispute runs through four short units of work with the arbitration and
settlement calls in between, never inside a lock:

    1. open      OPENED, transaction -> DISPUTED, initiator counter
    2. submit    -> REVIEWING, case bundle assembled
       assess    ArbitrationCollaborator.assess(bundle)       (no lock held)
    3. accept    -> ESCALATED | EVIDENCE_REQUESTED | RESOLVED_*
       settle    refund / release through settlement          (no lock held)
    4. close     transaction -> COMPLETED | REFUNDED, dispute -> CLOSED,
                 reputation and compensation effects

A failure between steps leaves the dispute in a well-defined state
(REVIEWING or RESOLVED_*) that the background sweep retries.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from escrow_engine.domain.collaborators import ArbitrationRecord, CaseBundle, PartyProfile
from escrow_engine.domain.enums import (
    SYSTEM_ACTOR,
    ArbitrationDecision,
    DecisionSource,
    DisputeStatus,
    EscrowStatus,
    EventType,
)
from escrow_engine.domain.exceptions import (
    CollaboratorUnavailableError,
    DisputeNotFoundError,
    EscrowEngineError,
    UnauthorizedError,
    ValidationError,
)
from escrow_engine.infrastructure.database.ledger import transaction_key, user_key
from escrow_engine.logging_config import get_logger
from escrow_engine.services.base import BaseService, EngineContext, parse_uuid
from escrow_engine.services.compensation_service import DISPUTE_ENTITY
from escrow_engine.services.escrow_service import MICRO
from escrow_engine.services.reputation_service import blank_reputation
from escrow_engine.services.transitions import (
    apply_dispute_transition,
    apply_escrow_transition,
    create_dispute,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from escrow_engine.domain.results import Outcome
    from escrow_engine.infrastructure.database.ledger import UnitOfWork
    from escrow_engine.infrastructure.database.orm_models import (
        EscrowDispute,
        EscrowTransaction,
        UserReputation,
    )
    from escrow_engine.services.compensation_service import CompensationService
    from escrow_engine.services.reputation_service import ReputationService

logger = get_logger(__name__)

_RESOLVE_EVENTS = {
    ArbitrationDecision.RESOLVED_BUYER: "resolve_for_buyer",
    ArbitrationDecision.RESOLVED_SELLER: "resolve_for_seller",
    ArbitrationDecision.RESOLVED_SPLIT: "resolve_split",
}


def _profile(rep: UserReputation) -> PartyProfile:
    return PartyProfile(
        user_id=rep.user_id,
        overall_score=rep.overall_score,
        transaction_count=rep.transaction_count,
        disputes_initiated=rep.disputes_initiated,
        disputes_lost=rep.disputes_lost,
        trust_level=rep.trust_level,
    )


def _transaction_snapshot(tx: EscrowTransaction) -> dict:
    def iso(value: datetime | None) -> str | None:
        return value.isoformat() if value else None

    return {
        "id": str(tx.id),
        "buyer_id": tx.buyer_id,
        "seller_id": tx.seller_id,
        "amount": str(tx.amount),
        "escrow_fee": str(tx.escrow_fee),
        "token_symbol": tx.token_symbol,
        "chain": tx.chain,
        "status": tx.status,
        "description": tx.description,
        "created_at": iso(tx.created_at),
        "funded_at": iso(tx.funded_at),
        "evidence_submitted_at": iso(tx.evidence_submitted_at),
        "verified_at": iso(tx.verified_at),
        "disputed_at": iso(tx.disputed_at),
        "expires_at": iso(tx.expires_at),
    }


def split_amounts(
    amount: Decimal,
    fee: Decimal,
    decision: ArbitrationDecision,
    compensation_amount: Decimal | None,
    default_refund_ratio: Decimal,
) -> dict:
    """Work out who receives what for a resolution.

    The fee is withheld only from what the seller receives. For a split the
    refund is ``compensation_amount`` capped at the transaction amount (or
    ``default_refund_ratio`` of it when no amount was given).
    """
    if decision is ArbitrationDecision.RESOLVED_BUYER:
        refund = amount
    elif decision is ArbitrationDecision.RESOLVED_SELLER:
        refund = Decimal("0")
    else:
        if compensation_amount is None:
            refund = amount * default_refund_ratio
        else:
            refund = min(max(compensation_amount, Decimal("0")), amount)
    refund = refund.quantize(MICRO)
    seller_share = amount - refund
    fee_withheld = min(fee, seller_share)
    release = seller_share - fee_withheld
    percent = (refund / amount * 100).quantize(Decimal("0.01")) if amount else Decimal("0")
    return {
        "refund_amount": str(refund),
        "release_amount": str(release),
        "fee_withheld": str(fee_withheld),
        "refund_percent": str(percent),
    }


class DisputeService(BaseService):
    """Manages disputes from opening to settlement."""

    def __init__(
        self,
        ctx: EngineContext,
        reputation: ReputationService,
        compensation: CompensationService,
    ) -> None:
        super().__init__(ctx)
        self._reputation = reputation
        self._compensation = compensation

    # ------------------------------------------------------------------
    # 1. Open
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        transaction_id: str,
        actor_id: str,
        reason: str,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowDispute]:
        """Open a dispute and submit it to arbitration.

        The dispute is committed before arbitration starts; an arbitration
        failure does not undo it (the sweep retries).
        """

        async def call() -> EscrowDispute:
            if not reason or not reason.strip():
                raise ValidationError("A dispute reason is required")
            tx_id = parse_uuid(transaction_id, "transaction_id")
            now = self._now()
            async with self._ledger.unit_of_work(
                transaction_key(tx_id), user_key(actor_id)
            ) as uow:
                tx = await self._require_transaction(uow, tx_id)
                open_dispute = await uow.disputes.get_open_for_transaction(tx_id)
                reputation = await uow.reputations.get(actor_id)
                self._guard.check_open_dispute(actor_id, tx, open_dispute, reputation, now)
                self._ensure_no_settlement(tx, now)

                dispute = await create_dispute(
                    uow, tx, actor_id, reason.strip(), description, actor_id, now
                )
                await self._reputation.record_dispute_opened(uow, actor_id)
            await self._publish(uow)
            logger.info(
                "dispute.opened",
                dispute_id=str(dispute.id),
                transaction_id=str(tx_id),
                initiator=actor_id,
                reason=reason,
            )

            try:
                return await self._arbitrate(dispute.id)
            except EscrowEngineError as err:
                logger.warning(
                    "dispute.arbitration_deferred",
                    dispute_id=str(dispute.id),
                    error_kind=err.kind.value,
                    error=err.message,
                )
                return await self._load_dispute(dispute.id)

        return await self._attempt(
            "open_dispute",
            call,
            snapshot=lambda: self._transaction_snapshot(transaction_id),
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        )

    # ------------------------------------------------------------------
    # 2. Submit + assess
    # ------------------------------------------------------------------

    async def submit_for_arbitration(self, dispute_id: str) -> Outcome[EscrowDispute]:
        """(Re)submit a dispute: review, assess, then apply the decision."""

        async def call() -> EscrowDispute:
            return await self._arbitrate(parse_uuid(dispute_id, "dispute_id"))

        return await self._attempt(
            "submit_for_arbitration", call, snapshot=lambda: self._dispute_snapshot(dispute_id)
        )

    async def _arbitrate(self, dispute_id: uuid.UUID) -> EscrowDispute:
        dispute = await self._load_dispute(dispute_id)
        status = DisputeStatus(dispute.status)
        if status.is_resolved:
            return await self._settle_and_close(dispute_id)
        if status not in (
            DisputeStatus.OPENED,
            DisputeStatus.EVIDENCE_REQUESTED,
            DisputeStatus.REVIEWING,
        ):
            return dispute

        bundle = await self._begin_review(dispute_id)
        if bundle is None:
            return await self._load_dispute(dispute_id)

        try:
            record = await self._call_collaborator(
                "arbitration",
                "assess",
                lambda: self._ctx.arbitrator.assess(bundle),
            )
            record = self._validate_record(record)
        except CollaboratorUnavailableError as err:
            await self._record_arbitration_failure(dispute_id, err.message)
            raise

        logger.info(
            "dispute.assessed",
            dispute_id=str(dispute_id),
            decision=record.decision.value,
            confidence=record.confidence,
            assessment_id=record.assessment_id,
        )
        return await self._accept(dispute_id, record, DecisionSource.AUTOMATED, SYSTEM_ACTOR)

    async def _begin_review(self, dispute_id: uuid.UUID) -> CaseBundle | None:
        """Move the dispute to REVIEWING and assemble its case bundle."""
        dispute = await self._load_dispute(dispute_id)
        now = self._now()
        async with self._ledger.unit_of_work(
            transaction_key(dispute.escrow_transaction_id)
        ) as uow:
            dispute = await self._require_dispute(uow, dispute_id)
            if dispute.status in (DisputeStatus.OPENED, DisputeStatus.EVIDENCE_REQUESTED):
                await apply_dispute_transition(
                    uow, dispute, "start_review", EventType.DISPUTE_REVIEWING, SYSTEM_ACTOR, now
                )
            elif dispute.status != DisputeStatus.REVIEWING:
                return None

            tx = await self._require_transaction(uow, dispute.escrow_transaction_id)
            proofs = await uow.proofs.list_by_transaction(tx.id)
            buyer = await uow.reputations.get(tx.buyer_id) or blank_reputation(tx.buyer_id)
            seller = await uow.reputations.get(tx.seller_id) or blank_reputation(tx.seller_id)
            bundle = CaseBundle(
                dispute_id=str(dispute.id),
                transaction=_transaction_snapshot(tx),
                proofs=[
                    {
                        "id": str(p.id),
                        "submitter_id": p.submitter_id,
                        "proof_type": p.proof_type,
                        "description": p.description,
                        "content_ref": p.content_ref,
                        "verified": p.verified,
                        "submitted_at": p.submitted_at.isoformat(),
                    }
                    for p in proofs
                ],
                buyer=_profile(buyer),
                seller=_profile(seller),
                initiator_id=dispute.initiator_id,
                reason=dispute.reason,
                description=dispute.description or "",
            )
        await self._publish(uow)
        return bundle

    @staticmethod
    def _validate_record(record: ArbitrationRecord) -> ArbitrationRecord:
        try:
            decision = ArbitrationDecision(record.decision)
            confidence = float(record.confidence)
        except (TypeError, ValueError) as err:
            raise CollaboratorUnavailableError(
                "arbitration", "assess", f"malformed decision: {err}"
            ) from err
        if not 0.0 <= confidence <= 1.0:
            raise CollaboratorUnavailableError(
                "arbitration", "assess", f"confidence out of range: {confidence}"
            )
        compensation = record.compensation_amount
        if compensation is not None:
            try:
                compensation = Decimal(str(compensation))
            except InvalidOperation as err:
                raise CollaboratorUnavailableError(
                    "arbitration",
                    "assess",
                    f"malformed compensation: {record.compensation_amount!r}",
                ) from err
            if not compensation.is_finite():
                raise CollaboratorUnavailableError(
                    "arbitration", "assess", f"compensation not finite: {compensation}"
                )
        if (
            decision is record.decision
            and confidence == record.confidence
            and compensation == record.compensation_amount
        ):
            return record
        return ArbitrationRecord(
            decision=decision,
            confidence=confidence,
            rationale=record.rationale,
            compensation_amount=compensation,
            assessment_id=record.assessment_id,
        )

    async def _record_arbitration_failure(self, dispute_id: uuid.UUID, error: str) -> None:
        dispute = await self._load_dispute(dispute_id)
        async with self._ledger.unit_of_work(
            transaction_key(dispute.escrow_transaction_id)
        ) as uow:
            dispute = await self._require_dispute(uow, dispute_id)
            dispute.arbitration_attempts += 1
            dispute.last_arbitration_error = error[:2000]
            await uow.session.flush()
        logger.warning(
            "dispute.arbitration_failed",
            dispute_id=str(dispute_id),
            attempts=dispute.arbitration_attempts,
            error=error,
        )

    # ------------------------------------------------------------------
    # 3. Accept decision
    # ------------------------------------------------------------------

    async def accept_decision(
        self,
        dispute_id: str,
        record: ArbitrationRecord,
        source: DecisionSource = DecisionSource.AUTOMATED,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Outcome[EscrowDispute]:
        """Apply an arbitration decision. Re-delivery after CLOSED is a no-op."""

        async def call() -> EscrowDispute:
            return await self._accept(
                parse_uuid(dispute_id, "dispute_id"),
                self._validate_decision_input(record),
                DecisionSource(source),
                actor_id,
            )

        return await self._attempt(
            "accept_decision", call, snapshot=lambda: self._dispute_snapshot(dispute_id)
        )

    async def resolve_manually(
        self,
        dispute_id: str,
        actor_id: str,
        decision: str,
        rationale: str = "",
        compensation_amount: Decimal | str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowDispute]:
        """Operator decision; accepted from REVIEWING, ESCALATED or EVIDENCE_REQUESTED."""

        async def call() -> EscrowDispute:
            if actor_id not in self._settings.operator_id_set:
                raise UnauthorizedError(actor_id, "resolve dispute", "operator only")
            try:
                parsed = ArbitrationDecision(decision)
            except ValueError as err:
                raise ValidationError(f"Unknown decision: {decision!r}") from err
            compensation = None
            if compensation_amount is not None:
                try:
                    compensation = Decimal(str(compensation_amount))
                except InvalidOperation as err:
                    raise ValidationError(
                        f"compensation_amount is not a number: {compensation_amount!r}"
                    ) from err
                if not compensation.is_finite():
                    raise ValidationError("compensation_amount must be finite")
                if compensation < 0:
                    raise ValidationError("compensation_amount must not be negative")
            record = ArbitrationRecord(
                decision=parsed,
                confidence=1.0,
                rationale=rationale,
                compensation_amount=compensation,
                assessment_id=f"manual:{actor_id}",
            )
            return await self._accept(
                parse_uuid(dispute_id, "dispute_id"), record, DecisionSource.MANUAL, actor_id
            )

        return await self._attempt(
            "resolve_manually",
            call,
            snapshot=lambda: self._dispute_snapshot(dispute_id),
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    def _validate_decision_input(record: ArbitrationRecord) -> ArbitrationRecord:
        try:
            return DisputeService._validate_record(record)
        except CollaboratorUnavailableError as err:
            raise ValidationError(err.message) from err

    async def _accept(
        self,
        dispute_id: uuid.UUID,
        record: ArbitrationRecord,
        source: DecisionSource,
        actor_id: str,
    ) -> EscrowDispute:
        dispute = await self._load_dispute(dispute_id)
        now = self._now()
        threshold = self._settings.arbitration_confidence_threshold
        resolved = False

        async with self._ledger.unit_of_work(
            transaction_key(dispute.escrow_transaction_id)
        ) as uow:
            dispute = await self._require_dispute(uow, dispute_id)
            status = DisputeStatus(dispute.status)

            if status is DisputeStatus.CLOSED:
                logger.info("dispute.decision_ignored", dispute_id=str(dispute_id), reason="closed")
                return dispute
            if status.is_resolved:
                resolved = True
            elif source is DecisionSource.AUTOMATED and status is not DisputeStatus.REVIEWING:
                # Escalated disputes wait for a manual decision.
                logger.info(
                    "dispute.decision_ignored", dispute_id=str(dispute_id), status=status.value
                )
                return dispute
            else:
                self._store_record(dispute, record, source)
                if record.decision is ArbitrationDecision.NEED_MORE_INFO:
                    await apply_dispute_transition(
                        uow,
                        dispute,
                        "request_evidence",
                        EventType.DISPUTE_EVIDENCE_REQUESTED,
                        actor_id,
                        now,
                        metadata=record.to_dict(),
                    )
                    logger.info("dispute.evidence_requested", dispute_id=str(dispute_id))
                elif source is DecisionSource.AUTOMATED and record.confidence < threshold:
                    await apply_dispute_transition(
                        uow,
                        dispute,
                        "escalate",
                        EventType.DISPUTE_ESCALATED,
                        actor_id,
                        now,
                        metadata={**record.to_dict(), "threshold": threshold},
                    )
                    logger.info(
                        "dispute.escalated",
                        dispute_id=str(dispute_id),
                        confidence=record.confidence,
                        threshold=threshold,
                    )
                else:
                    tx = await self._require_transaction(uow, dispute.escrow_transaction_id)
                    dispute.resolution_detail = split_amounts(
                        tx.amount,
                        tx.escrow_fee,
                        record.decision,
                        record.compensation_amount,
                        self._settings.split_default_refund_ratio,
                    )
                    await apply_dispute_transition(
                        uow,
                        dispute,
                        _RESOLVE_EVENTS[record.decision],
                        EventType.DISPUTE_RESOLVED,
                        actor_id,
                        now,
                        metadata={
                            **record.to_dict(),
                            "source": source.value,
                            **dispute.resolution_detail,
                        },
                    )
                    resolved = True
                    logger.info(
                        "dispute.resolved",
                        dispute_id=str(dispute_id),
                        decision=record.decision.value,
                        source=source.value,
                        **dispute.resolution_detail,
                    )
        await self._publish(uow)

        if not resolved:
            return dispute
        try:
            return await self._settle_and_close(dispute_id)
        except CollaboratorUnavailableError as err:
            logger.warning(
                "dispute.settlement_deferred", dispute_id=str(dispute_id), error=err.message
            )
            return await self._load_dispute(dispute_id)

    @staticmethod
    def _store_record(
        dispute: EscrowDispute, record: ArbitrationRecord, source: DecisionSource
    ) -> None:
        dispute.resolution = record.decision.value
        dispute.decision_source = source.value
        dispute.confidence = record.confidence
        dispute.rationale = record.rationale
        dispute.compensation_amount = record.compensation_amount
        dispute.arbitration_assessment_id = record.assessment_id
        dispute.last_arbitration_error = None

    # ------------------------------------------------------------------
    # 4. Settle + close
    # ------------------------------------------------------------------

    async def settle_dispute(self, dispute_id: str) -> Outcome[EscrowDispute]:
        """Retry settlement and closing of a resolved dispute."""

        async def call() -> EscrowDispute:
            return await self._settle_and_close(parse_uuid(dispute_id, "dispute_id"))

        return await self._attempt(
            "settle_dispute", call, snapshot=lambda: self._dispute_snapshot(dispute_id)
        )

    async def _settle_and_close(self, dispute_id: uuid.UUID) -> EscrowDispute:
        dispute = await self._load_dispute(dispute_id)
        if not DisputeStatus(dispute.status).is_resolved:
            return dispute
        tx = await self._read_transaction(dispute.escrow_transaction_id)
        detail = dispute.resolution_detail or {}
        refund = Decimal(detail.get("refund_amount", "0"))
        release = Decimal(detail.get("release_amount", "0"))

        receipts = []
        try:
            if refund > 0:
                receipts.append(
                    await self._call_collaborator(
                        "settlement",
                        "refund",
                        lambda: self._ctx.settlement.refund(str(tx.id), tx.buyer_id, refund),
                    )
                )
            if release > 0:
                receipts.append(
                    await self._call_collaborator(
                        "settlement",
                        "release_funds",
                        lambda: self._ctx.settlement.release_funds(
                            str(tx.id), tx.seller_id, release
                        ),
                    )
                )
        except CollaboratorUnavailableError as err:
            await self._record_settlement_failure(dispute_id, err.message)
            raise

        return await self._close(dispute_id, [r.settlement_ref for r in receipts])

    async def _close(self, dispute_id: uuid.UUID, settlement_refs: list[str]) -> EscrowDispute:
        dispute = await self._load_dispute(dispute_id)
        tx = await self._read_transaction(dispute.escrow_transaction_id)
        now = self._now()

        async with self._ledger.unit_of_work(
            transaction_key(tx.id), user_key(tx.buyer_id), user_key(tx.seller_id)
        ) as uow:
            dispute = await self._require_dispute(uow, dispute_id)
            if not DisputeStatus(dispute.status).is_resolved:
                return dispute
            tx = await self._require_transaction(uow, dispute.escrow_transaction_id)
            decision = ArbitrationDecision(dispute.resolution)

            if decision is ArbitrationDecision.RESOLVED_SELLER:
                event_name, event_type = "resolved_for_seller", EventType.FUNDS_RELEASED
            else:
                event_name, event_type = "resolved_for_buyer", EventType.FUNDS_REFUNDED
            if settlement_refs:
                tx.settlement_ref = settlement_refs[0]
            await apply_escrow_transition(
                uow,
                tx,
                event_name,
                event_type,
                SYSTEM_ACTOR,
                now,
                metadata={
                    "dispute_id": str(dispute.id),
                    "settlement_refs": settlement_refs,
                    **(dispute.resolution_detail or {}),
                },
            )
            await self._apply_outcome_effects(uow, tx, dispute, decision)
            await apply_dispute_transition(
                uow, dispute, "close", EventType.DISPUTE_CLOSED, SYSTEM_ACTOR, now
            )
        await self._publish(uow)
        logger.info(
            "dispute.closed",
            dispute_id=str(dispute_id),
            transaction_id=str(tx.id),
            transaction_status=tx.status,
        )
        return dispute

    async def _apply_outcome_effects(
        self,
        uow: UnitOfWork,
        tx: EscrowTransaction,
        dispute: EscrowDispute,
        decision: ArbitrationDecision,
    ) -> None:
        """Reputation and compensation effects of a closed dispute."""
        if decision is ArbitrationDecision.RESOLVED_BUYER:
            winner, loser = tx.buyer_id, tx.seller_id
        elif decision is ArbitrationDecision.RESOLVED_SELLER:
            winner, loser = tx.seller_id, tx.buyer_id
        else:
            winner = loser = None

        if loser is not None:
            await self._reputation.record_dispute_lost(uow, loser)
        if tx.status == EscrowStatus.COMPLETED:
            await self._reputation.record_completion(uow, tx.buyer_id, tx.seller_id)

        if winner is not None:
            record = await self._compensation.issue(
                uow,
                user_id=winner,
                amount=dispute.compensation_amount,
                reason=f"Dispute resolved: {decision.value}",
                related_entity_id=str(dispute.id),
                related_entity_type=DISPUTE_ENTITY,
            )
            if record is not None:
                await uow.events.record(
                    transaction_id=tx.id,
                    dispute_id=dispute.id,
                    event_type=EventType.COMPENSATION_ISSUED,
                    old_status=tx.status,
                    new_status=tx.status,
                    actor=SYSTEM_ACTOR,
                    metadata={
                        "compensation_id": str(record.id),
                        "user_id": winner,
                        "amount": str(record.amount),
                    },
                )

    async def _record_settlement_failure(self, dispute_id: uuid.UUID, error: str) -> None:
        dispute = await self._load_dispute(dispute_id)
        async with self._ledger.unit_of_work(
            transaction_key(dispute.escrow_transaction_id)
        ) as uow:
            dispute = await self._require_dispute(uow, dispute_id)
            dispute.settlement_attempts += 1
            dispute.last_settlement_error = error[:2000]
            await uow.session.flush()
        logger.warning(
            "dispute.settlement_failed",
            dispute_id=str(dispute_id),
            attempts=dispute.settlement_attempts,
            error=error,
        )

    # ------------------------------------------------------------------
    # Sweep helpers
    # ------------------------------------------------------------------

    async def escalate_for_review(self, dispute_id: str, reason: str) -> Outcome[EscrowDispute]:
        """Hand a stuck dispute to a human.

        Used when automated arbitration keeps failing, or an evidence
        request went unanswered.
        """

        async def call() -> EscrowDispute:
            did = parse_uuid(dispute_id, "dispute_id")
            dispute = await self._load_dispute(did)
            now = self._now()
            async with self._ledger.unit_of_work(
                transaction_key(dispute.escrow_transaction_id)
            ) as uow:
                dispute = await self._require_dispute(uow, did)
                if dispute.status in (DisputeStatus.OPENED, DisputeStatus.EVIDENCE_REQUESTED):
                    await apply_dispute_transition(
                        uow, dispute, "start_review", EventType.DISPUTE_REVIEWING,
                        SYSTEM_ACTOR, now,
                    )
                if dispute.status != DisputeStatus.REVIEWING:
                    return dispute
                await apply_dispute_transition(
                    uow,
                    dispute,
                    "escalate",
                    EventType.DISPUTE_ESCALATED,
                    SYSTEM_ACTOR,
                    now,
                    metadata={"reason": reason},
                )
            await self._publish(uow)
            logger.info("dispute.escalated", dispute_id=str(did), reason=reason)
            return dispute

        return await self._attempt(
            "escalate_for_review", call, snapshot=lambda: self._dispute_snapshot(dispute_id)
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: str) -> Outcome[EscrowDispute]:
        async def call() -> EscrowDispute:
            return await self._load_dispute(parse_uuid(dispute_id, "dispute_id"))

        return await self._attempt("get_dispute", call)

    async def list_disputes(self, transaction_id: str) -> Outcome[list[EscrowDispute]]:
        async def call() -> list[EscrowDispute]:
            tx_id = parse_uuid(transaction_id, "transaction_id")
            await self._read_transaction(tx_id)
            async with self._ledger.reader() as uow:
                return await uow.disputes.list_by_transaction(tx_id)

        return await self._attempt("list_disputes", call)

    async def _load_dispute(self, dispute_id: uuid.UUID) -> EscrowDispute:
        async with self._ledger.reader() as uow:
            dispute = await uow.disputes.get_by_id(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute

    @staticmethod
    async def _require_dispute(uow: UnitOfWork, dispute_id: uuid.UUID) -> EscrowDispute:
        dispute = await uow.disputes.get_by_id(dispute_id, for_update=True)
        if dispute is None:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute

    async def _dispute_snapshot(self, dispute_id: str) -> EscrowDispute | None:
        try:
            did = parse_uuid(dispute_id, "dispute_id")
        except ValidationError:
            return None
        async with self._ledger.reader() as uow:
            return await uow.disputes.get_by_id(did)
