"""Authorization Guard — stateless predicates over transaction snapshots.

Every engine entry point calls a ``check_*`` method before mutating anything.
The guard only reads: the transaction's current status, the actor's role on
it (buyer / seller / system), and the actor's reputation snapshot
(``cooldown_until``, ``overall_score``). It never writes.

``check_*`` raises the typed domain error that explains the rejection;
``can_*`` is the boolean form of the same predicate.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from escrow_engine.domain.enums import (
    FUNDED_STATUSES,
    SYSTEM_ACTOR,
    ActorRole,
    EscrowStatus,
)
from escrow_engine.domain.exceptions import (
    ConflictingDisputeError,
    EscrowEngineError,
    IntegrityViolationError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from escrow_engine.domain.state_machine import find_rule, parse_status

if TYPE_CHECKING:
    from collections.abc import Callable

RATEABLE_STATUSES = frozenset({EscrowStatus.COMPLETED, EscrowStatus.REFUNDED})


def role_of(actor_id: str, transaction: Any) -> ActorRole:
    """Return the role ``actor_id`` plays on ``transaction``."""
    if actor_id == SYSTEM_ACTOR:
        return ActorRole.SYSTEM
    if actor_id == transaction.buyer_id:
        return ActorRole.BUYER
    if actor_id == transaction.seller_id:
        return ActorRole.SELLER
    return ActorRole.NONE


def counterparty_of(actor_id: str, transaction: Any) -> str | None:
    if actor_id == transaction.buyer_id:
        return transaction.seller_id
    if actor_id == transaction.seller_id:
        return transaction.buyer_id
    return None


def in_cooldown(reputation: Any, now: datetime | None = None) -> bool:
    """True if the reputation snapshot carries a cooldown that has not yet passed."""
    if reputation is None or reputation.cooldown_until is None:
        return False
    return reputation.cooldown_until > (now or datetime.now(UTC))


class AuthorizationGuard:
    """Role and state predicates for every mutating engine operation."""

    def __init__(self, min_score_to_transact: float = 0.0) -> None:
        self._min_score = min_score_to_transact

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def check_create_escrow(
        self,
        actor_id: str,
        buyer_id: str,
        seller_id: str,
        reputation: Any = None,
        now: datetime | None = None,
        buyer_reputation: Any = None,
    ) -> None:
        """The initiating actor and the buyer must both be in good standing.

        ``reputation`` belongs to ``actor_id``; ``buyer_reputation`` is only
        consulted when a seller opens the escrow on the buyer's behalf.
        """
        if buyer_id == seller_id:
            raise IntegrityViolationError("Buyer and seller must be different users")
        if actor_id not in (buyer_id, seller_id):
            raise UnauthorizedError(actor_id, "create escrow", "actor is not a party")
        self._check_may_transact(actor_id, actor_id, reputation, now)
        if actor_id != buyer_id:
            self._check_may_transact(actor_id, buyer_id, buyer_reputation, now)

    def _check_may_transact(
        self, actor_id: str, user_id: str, reputation: Any, now: datetime | None
    ) -> None:
        subject = "" if user_id == actor_id else f"buyer {user_id} "
        if in_cooldown(reputation, now):
            raise UnauthorizedError(
                actor_id,
                "create escrow",
                f"{subject}in cooldown until {reputation.cooldown_until.isoformat()}",
            )
        if reputation is not None and reputation.overall_score < self._min_score:
            raise UnauthorizedError(
                actor_id,
                "create escrow",
                f"{subject}reputation {reputation.overall_score:.2f} "
                f"below {self._min_score:.2f}",
            )

    def check_transition(
        self,
        actor_id: str,
        transaction: Any,
        target_status: str,
        reputation: Any = None,
        now: datetime | None = None,
    ) -> None:
        """Check that ``actor_id`` may request ``current -> target_status``.

        Terminal transactions reject every request with InvalidTransition,
        whoever asks. With the actor's ``reputation`` given, a user in
        cooldown may not move a transaction into DISPUTED.
        """
        current = EscrowStatus(transaction.status)
        target = parse_status(str(target_status))
        if current.is_terminal:
            raise InvalidTransitionError(current, target, "transaction is terminal")

        rule = find_rule(current, target)
        if rule is None:
            raise InvalidTransitionError(current, target)

        role = role_of(actor_id, transaction)
        if role is ActorRole.NONE:
            raise UnauthorizedError(actor_id, f"move transaction to {target}",
                                    "actor is not a party")
        if role not in rule.actors:
            raise UnauthorizedError(
                actor_id, f"move transaction to {target}", f"role {role} not permitted"
            )
        if target is EscrowStatus.DISPUTED:
            self._check_standing(actor_id, "open dispute", reputation, now)

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def check_open_dispute(
        self,
        actor_id: str,
        transaction: Any,
        open_dispute: Any = None,
        reputation: Any = None,
        now: datetime | None = None,
    ) -> None:
        current = EscrowStatus(transaction.status)
        if current.is_terminal:
            raise InvalidTransitionError(current, EscrowStatus.DISPUTED,
                                         "transaction is terminal")
        role = role_of(actor_id, transaction)
        if role not in (ActorRole.BUYER, ActorRole.SELLER):
            raise UnauthorizedError(actor_id, "open dispute", "actor is not a party")
        if open_dispute is not None:
            raise ConflictingDisputeError(str(transaction.id), str(open_dispute.id))
        if current not in FUNDED_STATUSES:
            raise InvalidTransitionError(current, EscrowStatus.DISPUTED)
        self._check_standing(actor_id, "open dispute", reputation, now)

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def check_submit_proof(self, actor_id: str, transaction: Any) -> None:
        current = EscrowStatus(transaction.status)
        if role_of(actor_id, transaction) not in (ActorRole.BUYER, ActorRole.SELLER):
            raise UnauthorizedError(actor_id, "submit proof", "actor is not a party")
        if not current.holds_funds:
            raise InvalidTransitionError(
                current, "submit_proof", "evidence is accepted only while funds are held"
            )

    def check_verify_proof(self, actor_id: str, transaction: Any, proof: Any) -> None:
        current = EscrowStatus(transaction.status)
        if current.is_terminal:
            raise InvalidTransitionError(current, "verify_proof", "transaction is terminal")
        if proof.verified:
            raise IntegrityViolationError(f"Proof {proof.id} is already verified")
        if actor_id != SYSTEM_ACTOR and actor_id != counterparty_of(
            proof.submitter_id, transaction
        ):
            raise UnauthorizedError(
                actor_id, "verify proof", "only the counterparty or the system may verify"
            )

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def check_rate(
        self,
        actor_id: str,
        transaction: Any,
        rated_user_id: str,
        existing_rating: Any = None,
    ) -> None:
        if role_of(actor_id, transaction) not in (ActorRole.BUYER, ActorRole.SELLER):
            raise UnauthorizedError(actor_id, "rate", "actor is not a party")
        current = EscrowStatus(transaction.status)
        if current not in RATEABLE_STATUSES:
            raise InvalidTransitionError(current, "rate", "transaction is not settled")
        if rated_user_id == actor_id:
            raise IntegrityViolationError("Users cannot rate themselves")
        if rated_user_id != counterparty_of(actor_id, transaction):
            raise IntegrityViolationError(
                f"User {rated_user_id} is not the counterparty of {actor_id}"
            )
        if existing_rating is not None:
            raise IntegrityViolationError(
                f"User {actor_id} already rated transaction {transaction.id}"
            )

    @staticmethod
    def check_rating_value(rating: int) -> None:
        if not 1 <= rating <= 5:
            raise ValidationError(f"Rating must be between 1 and 5, got {rating}")

    # ------------------------------------------------------------------
    # Boolean forms
    # ------------------------------------------------------------------

    def can_transition(
        self,
        actor_id: str,
        transaction: Any,
        target_status: str,
        reputation: Any = None,
    ) -> bool:
        return _passes(
            self.check_transition, actor_id, transaction, target_status, reputation
        )

    def can_open_dispute(
        self,
        actor_id: str,
        transaction: Any,
        open_dispute: Any = None,
        reputation: Any = None,
    ) -> bool:
        return _passes(
            self.check_open_dispute, actor_id, transaction, open_dispute, reputation
        )

    def can_rate(
        self,
        actor_id: str,
        transaction: Any,
        rated_user_id: str | None = None,
        existing_rating: Any = None,
    ) -> bool:
        if rated_user_id is None:
            rated_user_id = counterparty_of(actor_id, transaction) or ""
        return _passes(
            self.check_rate, actor_id, transaction, rated_user_id, existing_rating
        )

    def can_create_escrow(
        self,
        actor_id: str,
        buyer_id: str,
        seller_id: str,
        reputation: Any = None,
        buyer_reputation: Any = None,
    ) -> bool:
        return _passes(
            self.check_create_escrow,
            actor_id,
            buyer_id,
            seller_id,
            reputation,
            None,
            buyer_reputation,
        )

    def can_submit_proof(self, actor_id: str, transaction: Any) -> bool:
        return _passes(self.check_submit_proof, actor_id, transaction)

    def can_verify_proof(self, actor_id: str, transaction: Any, proof: Any) -> bool:
        return _passes(self.check_verify_proof, actor_id, transaction, proof)

    # ------------------------------------------------------------------

    @staticmethod
    def _check_standing(
        actor_id: str, action: str, reputation: Any, now: datetime | None
    ) -> None:
        if in_cooldown(reputation, now):
            raise UnauthorizedError(
                actor_id, action, f"in cooldown until {reputation.cooldown_until.isoformat()}"
            )


def _passes(check: Callable[..., None], *args: Any) -> bool:
    try:
        check(*args)
    except EscrowEngineError:
        return False
    return True
