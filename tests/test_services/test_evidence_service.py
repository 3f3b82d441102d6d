"""Tests for proof submission and verification."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_engine.domain.enums import SYSTEM_ACTOR, ErrorKind, EscrowStatus, EventType

if TYPE_CHECKING:
    from conftest import Lifecycle

    from escrow_engine.services.engine import EscrowEngine

BUYER = "buyer-1"
SELLER = "seller-1"


class TestSubmitProof:
    async def test_seller_proof_moves_funded_to_evidence(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(
            str(tx.id), SELLER, "tracking", description="Shipped", content_ref="TRK-42"
        )
        assert outcome.ok
        assert outcome.value.proof_type == "tracking"
        assert outcome.value.verified is False

        loaded = (await engine.get_transaction(str(tx.id))).value
        assert loaded.status == EscrowStatus.EVIDENCE_SUBMITTED
        assert loaded.evidence_submitted_at is not None

    async def test_buyer_proof_keeps_status(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(str(tx.id), BUYER, "message", description="Still waiting")
        assert outcome.ok
        assert (await engine.get_transaction(str(tx.id))).value.status == EscrowStatus.FUNDED
        types = [e.event_type for e in (await engine.get_events(str(tx.id))).value]
        assert EventType.PROOF_SUBMITTED in types

    async def test_proof_type_case_insensitive(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(str(tx.id), SELLER, "PHOTO", content_ref="img://a")
        assert outcome.value.proof_type == "photo"

    async def test_unknown_proof_type(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(str(tx.id), SELLER, "hologram", content_ref="x")
        assert outcome.error_kind is ErrorKind.VALIDATION_ERROR

    async def test_content_required(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(str(tx.id), SELLER, "tracking", content_ref="  ")
        assert outcome.error_kind is ErrorKind.VALIDATION_ERROR
        assert outcome.current.status == EscrowStatus.FUNDED

    async def test_requires_held_funds(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.create()
        outcome = await engine.submit_proof(str(tx.id), SELLER, "tracking", content_ref="TRK")
        assert outcome.error_kind is ErrorKind.INVALID_TRANSITION
        assert outcome.current.status == EscrowStatus.INITIATED

    async def test_outsider_rejected(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(str(tx.id), "mallory", "message")
        assert outcome.error_kind is ErrorKind.UNAUTHORIZED

    async def test_unknown_transaction(self, engine: EscrowEngine) -> None:
        outcome = await engine.submit_proof(
            "00000000-0000-0000-0000-000000000000", SELLER, "message"
        )
        assert outcome.error_kind is ErrorKind.NOT_FOUND

    async def test_list_proofs_in_order(self, lifecycle: Lifecycle, engine: EscrowEngine) -> None:
        tx = await lifecycle.funded()
        await engine.submit_proof(str(tx.id), SELLER, "tracking", content_ref="TRK")
        await engine.submit_proof(str(tx.id), BUYER, "message", description="ok")
        proofs = (await engine.list_proofs(str(tx.id))).value
        assert [p.submitter_id for p in proofs] == [SELLER, BUYER]


class TestVerifyProof:
    async def _proof(self, lifecycle: Lifecycle, engine: EscrowEngine):
        tx = await lifecycle.funded()
        outcome = await engine.submit_proof(str(tx.id), SELLER, "tracking", content_ref="TRK")
        return tx, outcome.value

    async def test_counterparty_verifies(self, engine: EscrowEngine) -> None:
        tx, proof = await self._proof(engine)
        outcome = await engine.verify_proof(str(proof.id), BUYER, notes="Tracking checks out")
        assert outcome.ok
        assert outcome.value.verified is True
        assert outcome.value.verified_by == BUYER
        types = [e.event_type for e in (await engine.get_events(str(tx.id))).value]
        assert EventType.PROOF_VERIFIED in types

    async def test_system_verifies(self, engine: EscrowEngine) -> None:
        _, proof = await self._proof(engine)
        assert (await engine.verify_proof(str(proof.id), SYSTEM_ACTOR)).ok

    async def test_submitter_cannot_verify_own_proof(self, engine: EscrowEngine) -> None:
        _, proof = await self._proof(engine)
        outcome = await engine.verify_proof(str(proof.id), SELLER)
        assert outcome.error_kind is ErrorKind.UNAUTHORIZED
        assert outcome.current.verified is False

    async def test_verify_twice(self, engine: EscrowEngine) -> None:
        _, proof = await self._proof(engine)
        await engine.verify_proof(str(proof.id), BUYER)
        outcome = await engine.verify_proof(str(proof.id), SYSTEM_ACTOR)
        assert outcome.error_kind is ErrorKind.INTEGRITY_VIOLATION

    async def test_unknown_proof(self, engine: EscrowEngine) -> None:
        outcome = await engine.verify_proof("00000000-0000-0000-0000-000000000000", BUYER)
        assert outcome.error_kind is ErrorKind.NOT_FOUND
