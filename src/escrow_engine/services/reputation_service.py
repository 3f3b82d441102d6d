"""Reputation Service — counters, ratings and trust levels.

The ``record_*`` / ``apply_*`` methods run INSIDE the caller's unit of work
so a reputation change commits or rolls back with the transition that
triggered it. Public methods open their own unit of work and return Outcomes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_engine.domain import reputation as scoring
from escrow_engine.domain.enums import TrustLevel, VerificationStatus
from escrow_engine.domain.exceptions import (
    TransactionNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from escrow_engine.infrastructure.database.ledger import transaction_key, user_key
from escrow_engine.infrastructure.database.orm_models import (
    TransactionRating,
    UserReputation,
)
from escrow_engine.logging_config import get_logger
from escrow_engine.services.base import BaseService, EngineContext, parse_uuid

if TYPE_CHECKING:
    from escrow_engine.domain.results import Outcome
    from escrow_engine.infrastructure.database.ledger import UnitOfWork

logger = get_logger(__name__)


def blank_reputation(user_id: str) -> UserReputation:
    """Unsaved reputation with defaults, for users that have no row yet."""
    return UserReputation(
        user_id=user_id,
        overall_score=scoring.NEUTRAL_SCORE,
        transaction_count=0,
        positive_ratings=0,
        negative_ratings=0,
        disputes_initiated=0,
        disputes_lost=0,
        strike_count=0,
        cooldown_until=None,
        trust_level=TrustLevel.NEW.value,
        verification_status=VerificationStatus.UNVERIFIED.value,
    )


class ReputationService(BaseService):
    """Manages per-user reputation counters."""

    def __init__(self, ctx: EngineContext) -> None:
        super().__init__(ctx)
        self._policy = ctx.settings.reputation_policy()

    # ------------------------------------------------------------------
    # In-unit-of-work updates
    # ------------------------------------------------------------------

    async def record_completion(self, uow: UnitOfWork, *user_ids: str) -> None:
        """Both parties of a COMPLETED transaction gain a completed transaction."""
        for user_id in user_ids:
            rep = await uow.reputations.get_or_create(user_id)
            rep.transaction_count += 1
            scoring.recompute(rep, self._policy)
        await uow.session.flush()

    async def record_dispute_opened(self, uow: UnitOfWork, user_id: str) -> None:
        rep = await uow.reputations.get_or_create(user_id)
        rep.disputes_initiated += 1
        scoring.recompute(rep, self._policy)
        await uow.session.flush()

    async def record_dispute_lost(self, uow: UnitOfWork, user_id: str) -> UserReputation:
        """Loser of a dispute: ``disputes_lost`` and a strike (may trigger cooldown)."""
        rep = await uow.reputations.get_or_create(user_id)
        previous_level = rep.trust_level
        rep.disputes_lost += 1
        scoring.register_strike(rep, self._policy, self._now())
        await uow.session.flush()
        if rep.trust_level != previous_level:
            logger.info(
                "reputation.trust_level_changed",
                user_id=user_id,
                old=previous_level,
                new=rep.trust_level,
                cooldown_until=rep.cooldown_until.isoformat() if rep.cooldown_until else None,
            )
        return rep

    async def apply_rating(self, uow: UnitOfWork, rated_user_id: str, rating: int) -> None:
        direction = scoring.classify_rating(rating)
        rep = await uow.reputations.get_or_create(rated_user_id)
        if direction > 0:
            rep.positive_ratings += 1
        elif direction < 0:
            rep.negative_ratings += 1
        scoring.recompute(rep, self._policy)
        await uow.session.flush()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get_reputation(self, user_id: str) -> Outcome[UserReputation]:
        async def call() -> UserReputation:
            async with self._ledger.reader() as uow:
                rep = await uow.reputations.get(user_id)
            return rep if rep is not None else blank_reputation(user_id)

        return await self._attempt("get_reputation", call)

    async def set_verification_status(
        self, actor_id: str, user_id: str, status: str
    ) -> Outcome[UserReputation]:
        """Operator action: record a user's identity verification result."""

        async def call() -> UserReputation:
            if actor_id not in self._settings.operator_id_set:
                raise UnauthorizedError(actor_id, "set verification status", "operator only")
            try:
                new_status = VerificationStatus(status)
            except ValueError as err:
                raise ValidationError(f"Unknown verification status: {status!r}") from err
            async with self._ledger.unit_of_work(user_key(user_id)) as uow:
                rep = await uow.reputations.get_or_create(user_id)
                rep.verification_status = new_status.value
                scoring.recompute(rep, self._policy)
                await uow.session.flush()
            logger.info("reputation.verification_set", user_id=user_id, status=new_status.value)
            return rep

        return await self._attempt("set_verification_status", call)

    async def submit_rating(
        self,
        actor_id: str,
        transaction_id: str,
        rated_user_id: str,
        rating: int,
        comment: str | None = None,
        idempotency_key: str | None = None,
    ) -> Outcome[TransactionRating]:
        """Record ``actor_id``'s rating of its counterparty on a settled transaction.

        A rater whose trust level is ``flagged`` still leaves a rating, but it
        is stored with ``flagged=True`` and does not move any counter.
        """

        async def call() -> TransactionRating:
            self._guard.check_rating_value(rating)
            tx_id = parse_uuid(transaction_id, "transaction_id")
            async with self._ledger.unit_of_work(
                transaction_key(tx_id), user_key(rated_user_id)
            ) as uow:
                tx = await uow.transactions.get_by_id(tx_id)
                if tx is None:
                    raise TransactionNotFoundError(str(tx_id))
                existing = await uow.ratings.get(tx_id, actor_id)
                self._guard.check_rate(actor_id, tx, rated_user_id, existing)

                rater = await uow.reputations.get(actor_id)
                flagged = rater is not None and rater.trust_level == TrustLevel.FLAGGED
                record = await uow.ratings.create(
                    TransactionRating(
                        escrow_transaction_id=tx_id,
                        rater_id=actor_id,
                        rated_user_id=rated_user_id,
                        rating=rating,
                        comment=comment,
                        flagged=flagged,
                    )
                )
                if not flagged:
                    await self.apply_rating(uow, rated_user_id, rating)

            logger.info(
                "rating.submitted",
                transaction_id=str(tx_id),
                rater=actor_id,
                rated=rated_user_id,
                rating=rating,
                flagged=flagged,
            )
            return record

        return await self._attempt(
            "submit_rating",
            call,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        )

    async def list_ratings(self, user_id: str) -> Outcome[list[TransactionRating]]:
        async def call() -> list[TransactionRating]:
            async with self._ledger.reader() as uow:
                return await uow.ratings.list_for_user(user_id)

        return await self._attempt("list_ratings", call)
