"""EscrowEngine — the single entry point used by REST routes, MCP tools,
the background sweep and the simulation.

``create_escrow_engine`` wires the ledger store, guard, collaborators and
services together once; every request then goes through the facade.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from escrow_engine.arbitration import ArbitratorFactory
from escrow_engine.domain.authorization import AuthorizationGuard
from escrow_engine.domain.enums import SYSTEM_ACTOR, DecisionSource, EscrowStatus
from escrow_engine.infrastructure.database.ledger import LedgerStore
from escrow_engine.infrastructure.redis_client import RedisIdempotencyStore
from escrow_engine.logging_config import get_logger
from escrow_engine.services.base import EngineContext, utcnow
from escrow_engine.services.compensation_service import CompensationService
from escrow_engine.services.dispute_service import DisputeService
from escrow_engine.services.escrow_service import EscrowService
from escrow_engine.services.evidence_service import EvidenceService
from escrow_engine.services.notification_service import NotificationDispatcher
from escrow_engine.services.reputation_service import ReputationService
from escrow_engine.services.settlement_service import SimulatedSettlement

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from decimal import Decimal

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from escrow_engine.config import Settings
    from escrow_engine.domain.collaborators import (
        ArbitrationCollaborator,
        ArbitrationRecord,
        NotificationCollaborator,
        SettlementCollaborator,
    )
    from escrow_engine.domain.results import Outcome
    from escrow_engine.infrastructure.database.orm_models import (
        CompensationRecord,
        EscrowDispute,
        EscrowEvent,
        EscrowProof,
        EscrowTransaction,
        TransactionRating,
        UserReputation,
    )

logger = get_logger(__name__)


class EscrowEngine:
    """Facade over the escrow, dispute, evidence, reputation and compensation services.

    Every method returns an ``Outcome``; nothing here raises a domain error.
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.reputation = ReputationService(ctx)
        self.compensation = CompensationService(ctx)
        self.escrow = EscrowService(ctx, self.reputation)
        self.disputes = DisputeService(ctx, self.reputation, self.compensation)
        self.evidence = EvidenceService(ctx, self.disputes)

    @property
    def settings(self) -> Settings:
        return self.ctx.settings

    # --- Transactions ---

    async def create_transaction(
        self, actor_id: str, buyer_id: str, seller_id: str, amount: Any, **options: Any
    ) -> Outcome[EscrowTransaction]:
        """See ``EscrowService.create_transaction`` for the accepted options."""
        return await self.escrow.create_transaction(
            actor_id, buyer_id, seller_id, amount, **options
        )

    async def request_transition(
        self,
        transaction_id: str,
        actor_id: str,
        target_status: str,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowTransaction]:
        return await self.escrow.request_transition(
            transaction_id, actor_id, target_status, idempotency_key
        )

    async def fund(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self.escrow.fund(transaction_id, actor_id, idempotency_key)

    async def confirm_delivery(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self.escrow.confirm_delivery(transaction_id, actor_id, idempotency_key)

    async def release(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self.escrow.release(transaction_id, actor_id, idempotency_key)

    async def cancel(
        self, transaction_id: str, actor_id: str, idempotency_key: str | None = None
    ) -> Outcome[EscrowTransaction]:
        return await self.escrow.cancel(transaction_id, actor_id, idempotency_key)

    async def expire_transaction(self, transaction_id: str) -> Outcome[EscrowTransaction]:
        """Expire one transaction; a funded one is handed to arbitration."""
        outcome = await self.escrow.expire_transaction(transaction_id)
        if outcome.ok and outcome.value.status == EscrowStatus.DISPUTED:
            status = await self.escrow.get_status(transaction_id)
            dispute_id = status.value["open_dispute_id"] if status.ok else None
            if dispute_id is not None:
                await self.disputes.submit_for_arbitration(dispute_id)
            refreshed = await self.escrow.get_transaction(transaction_id)
            if refreshed.ok:
                return refreshed
        return outcome

    async def get_transaction(self, transaction_id: str) -> Outcome[EscrowTransaction]:
        return await self.escrow.get_transaction(transaction_id)

    async def get_status(self, transaction_id: str) -> Outcome[dict]:
        return await self.escrow.get_status(transaction_id)

    async def get_events(self, transaction_id: str) -> Outcome[list[EscrowEvent]]:
        return await self.escrow.get_events(transaction_id)

    async def list_user_transactions(
        self, user_id: str, limit: int = 100
    ) -> Outcome[list[EscrowTransaction]]:
        return await self.escrow.list_user_transactions(user_id, limit)

    # --- Evidence ---

    async def submit_proof(
        self,
        transaction_id: str,
        submitter_id: str,
        proof_type: str,
        description: str | None = None,
        content_ref: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowProof]:
        return await self.evidence.submit_proof(
            transaction_id, submitter_id, proof_type, description, content_ref, idempotency_key
        )

    async def verify_proof(
        self,
        proof_id: str,
        verifier_id: str,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowProof]:
        return await self.evidence.verify_proof(proof_id, verifier_id, notes, idempotency_key)

    async def list_proofs(self, transaction_id: str) -> Outcome[list[EscrowProof]]:
        return await self.evidence.list_proofs(transaction_id)

    # --- Disputes ---

    async def open_dispute(
        self,
        transaction_id: str,
        actor_id: str,
        reason: str,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowDispute]:
        return await self.disputes.open_dispute(
            transaction_id, actor_id, reason, description, idempotency_key
        )

    async def submit_for_arbitration(self, dispute_id: str) -> Outcome[EscrowDispute]:
        return await self.disputes.submit_for_arbitration(dispute_id)

    async def accept_decision(
        self,
        dispute_id: str,
        record: ArbitrationRecord,
        source: DecisionSource = DecisionSource.AUTOMATED,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Outcome[EscrowDispute]:
        return await self.disputes.accept_decision(dispute_id, record, source, actor_id)

    async def resolve_manually(
        self,
        dispute_id: str,
        actor_id: str,
        decision: str,
        rationale: str = "",
        compensation_amount: Decimal | str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[EscrowDispute]:
        return await self.disputes.resolve_manually(
            dispute_id, actor_id, decision, rationale, compensation_amount, idempotency_key
        )

    async def settle_dispute(self, dispute_id: str) -> Outcome[EscrowDispute]:
        return await self.disputes.settle_dispute(dispute_id)

    async def get_dispute(self, dispute_id: str) -> Outcome[EscrowDispute]:
        return await self.disputes.get_dispute(dispute_id)

    async def list_disputes(self, transaction_id: str) -> Outcome[list[EscrowDispute]]:
        return await self.disputes.list_disputes(transaction_id)

    # --- Reputation & compensation ---

    async def get_reputation(self, user_id: str) -> Outcome[UserReputation]:
        return await self.reputation.get_reputation(user_id)

    async def set_verification_status(
        self, actor_id: str, user_id: str, status: str
    ) -> Outcome[UserReputation]:
        return await self.reputation.set_verification_status(actor_id, user_id, status)

    async def submit_rating(
        self,
        actor_id: str,
        transaction_id: str,
        rated_user_id: str,
        rating: int,
        comment: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[TransactionRating]:
        return await self.reputation.submit_rating(
            actor_id, transaction_id, rated_user_id, rating, comment, idempotency_key
        )

    async def list_ratings(self, user_id: str) -> Outcome[list[TransactionRating]]:
        return await self.reputation.list_ratings(user_id)

    async def report_compensation_outcome(
        self,
        record_id: str,
        status: str,
        settlement_ref: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[CompensationRecord]:
        return await self.compensation.report_outcome(
            record_id, status, settlement_ref, idempotency_key
        )

    async def list_compensations(self, user_id: str) -> Outcome[list[CompensationRecord]]:
        return await self.compensation.list_compensations(user_id)


def create_escrow_engine(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    settlement: SettlementCollaborator | None = None,
    arbitrator: ArbitrationCollaborator | None = None,
    notifier: NotificationCollaborator | None = None,
    redis: aioredis.Redis | None = None,
    clock: Callable[[], datetime] | None = None,
) -> EscrowEngine:
    """Wire an EscrowEngine.

    Collaborators default to the simulated settlement, the configured
    arbitrator backend and the logging notifier. Idempotency is enabled
    only when a Redis client is given.
    """
    idempotency = None
    if redis is not None and settings.idempotency_enabled:
        idempotency = RedisIdempotencyStore(redis, settings.redis_idempotency_ttl_seconds)

    ctx = EngineContext(
        ledger=LedgerStore(session_factory),
        guard=AuthorizationGuard(settings.min_score_to_transact),
        settings=settings,
        settlement=settlement or SimulatedSettlement(),
        arbitrator=arbitrator or ArbitratorFactory.create(settings.arbitrator_backend),
        notifier=NotificationDispatcher(notifier, settings.collaborator_timeout_seconds),
        idempotency=idempotency,
        clock=clock or utcnow,
    )
    logger.info(
        "engine.created",
        arbitrator=type(ctx.arbitrator).__name__,
        settlement=type(ctx.settlement).__name__,
        idempotency=idempotency is not None,
    )
    return EscrowEngine(ctx)
