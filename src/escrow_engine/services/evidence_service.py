"""Evidence Service — delivery proofs attached to a transaction.

Proofs are accepted only while the escrow holds funds. A seller proof on a
FUNDED transaction also moves it to EVIDENCE_SUBMITTED, and a proof that
answers an evidence request sends the dispute back to arbitration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_engine.domain.authorization import role_of
from escrow_engine.domain.enums import (
    ActorRole,
    DisputeStatus,
    EscrowStatus,
    EventType,
    ProofType,
)
from escrow_engine.domain.exceptions import (
    EscrowEngineError,
    ProofNotFoundError,
    ValidationError,
)
from escrow_engine.infrastructure.database.ledger import transaction_key
from escrow_engine.infrastructure.database.orm_models import EscrowProof
from escrow_engine.logging_config import get_logger
from escrow_engine.services.base import BaseService, EngineContext, parse_uuid
from escrow_engine.services.transitions import apply_escrow_transition

if TYPE_CHECKING:
    import uuid

    from escrow_engine.domain.results import Outcome
    from escrow_engine.services.dispute_service import DisputeService

logger = get_logger(__name__)

MAX_CONTENT_REF = 512


class EvidenceService(BaseService):
    """Accepts, verifies and lists delivery evidence."""

    def __init__(self, ctx: EngineContext, disputes: DisputeService) -> None:
        super().__init__(ctx)
        self._disputes = disputes

    async def submit_proof(
        self,
        transaction_id: str,
        submitter_id: str,
        proof_type: str,
        description: str | None = None,
        content_ref: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowProof]:
        async def call() -> EscrowProof:
            parsed_type = self._parse_proof_type(proof_type)
            ref = (content_ref or "").strip() or None
            if parsed_type.requires_content and ref is None:
                raise ValidationError(f"Proof type {parsed_type.value} requires a content_ref")
            if ref is not None and len(ref) > MAX_CONTENT_REF:
                raise ValidationError("content_ref is too long")
            return await self._submit(
                parse_uuid(transaction_id, "transaction_id"),
                submitter_id,
                parsed_type,
                description,
                ref,
            )

        return await self._attempt(
            "submit_proof",
            call,
            snapshot=lambda: self._transaction_snapshot(transaction_id),
            actor_id=submitter_id,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    def _parse_proof_type(value: str) -> ProofType:
        try:
            return ProofType(str(value).lower())
        except ValueError as err:
            raise ValidationError(f"Unknown proof type: {value!r}") from err

    async def _submit(
        self,
        tx_id: uuid.UUID,
        submitter_id: str,
        proof_type: ProofType,
        description: str | None,
        content_ref: str | None,
    ) -> EscrowProof:
        now = self._now()
        resubmit_dispute = None

        async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
            tx = await self._require_transaction(uow, tx_id)
            self._guard.check_submit_proof(submitter_id, tx)
            self._ensure_no_settlement(tx, now)

            proof = await uow.proofs.create(
                EscrowProof(
                    escrow_transaction_id=tx_id,
                    submitter_id=submitter_id,
                    proof_type=proof_type.value,
                    description=description,
                    content_ref=content_ref,
                    submitted_at=now,
                )
            )
            metadata = {"proof_id": str(proof.id), "proof_type": proof_type.value}

            if (
                tx.status == EscrowStatus.FUNDED
                and role_of(submitter_id, tx) is ActorRole.SELLER
            ):
                await apply_escrow_transition(
                    uow,
                    tx,
                    "evidence_submitted",
                    EventType.EVIDENCE_SUBMITTED,
                    submitter_id,
                    now,
                    metadata=metadata,
                )
            else:
                await uow.events.record(
                    transaction_id=tx_id,
                    event_type=EventType.PROOF_SUBMITTED,
                    old_status=tx.status,
                    new_status=tx.status,
                    actor=submitter_id,
                    metadata=metadata,
                )

            if tx.status == EscrowStatus.DISPUTED:
                dispute = await uow.disputes.get_open_for_transaction(tx_id)
                if dispute is not None and dispute.status == DisputeStatus.EVIDENCE_REQUESTED:
                    resubmit_dispute = dispute.id
        await self._publish(uow)
        logger.info(
            "evidence.submitted",
            transaction_id=str(tx_id),
            proof_id=str(proof.id),
            proof_type=proof_type.value,
            submitter=submitter_id,
            transaction_status=tx.status,
        )

        if resubmit_dispute is not None:
            outcome = await self._disputes.submit_for_arbitration(str(resubmit_dispute))
            if not outcome.ok:
                logger.warning(
                    "evidence.resubmit_deferred",
                    dispute_id=str(resubmit_dispute),
                    error_kind=outcome.error_kind.value,
                )
        return proof

    async def verify_proof(
        self,
        proof_id: str,
        verifier_id: str,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowProof]:
        """Mark a proof verified. Only the counterparty of the submitter or SYSTEM may."""

        async def snapshot() -> EscrowProof | None:
            try:
                pid = parse_uuid(proof_id, "proof_id")
            except EscrowEngineError:
                return None
            async with self._ledger.reader() as uow:
                return await uow.proofs.get_by_id(pid)

        async def call() -> EscrowProof:
            pid = parse_uuid(proof_id, "proof_id")
            existing = await snapshot()
            if existing is None:
                raise ProofNotFoundError(str(pid))
            now = self._now()
            tx_id = existing.escrow_transaction_id
            async with self._ledger.unit_of_work(transaction_key(tx_id)) as uow:
                tx = await self._require_transaction(uow, tx_id)
                proof = await uow.proofs.get_by_id(pid, for_update=True)
                self._guard.check_verify_proof(verifier_id, tx, proof)
                await uow.proofs.mark_verified(proof, verifier_id, notes, now)
                await uow.events.record(
                    transaction_id=tx_id,
                    event_type=EventType.PROOF_VERIFIED,
                    old_status=tx.status,
                    new_status=tx.status,
                    actor=verifier_id,
                    metadata={"proof_id": str(pid)},
                )
            logger.info("evidence.verified", proof_id=str(pid), verifier=verifier_id)
            return proof

        return await self._attempt(
            "verify_proof",
            call,
            snapshot=snapshot,
            actor_id=verifier_id,
            idempotency_key=idempotency_key,
        )

    async def list_proofs(self, transaction_id: str) -> Outcome[list[EscrowProof]]:
        async def call() -> list[EscrowProof]:
            tx_id = parse_uuid(transaction_id, "transaction_id")
            await self._read_transaction(tx_id)
            async with self._ledger.reader() as uow:
                return await uow.proofs.list_by_transaction(tx_id)

        return await self._attempt("list_proofs", call)
