"""SQLAlchemy 2.0 ORM models for the escrow engine.

Seven tables:
    1. escrow_transactions   — Custody record between a buyer and a seller.
    2. escrow_proofs         — Delivery evidence attached to a transaction.
    3. escrow_disputes       — Dispute sub-lifecycle, one open per transaction.
    4. user_reputations      — Per-user counters and derived score.
    5. transaction_ratings   — One rating per (transaction, rater).
    6. compensation_records  — Remedies owed to dispute winners.
    7. escrow_events         — Append-only audit log of every state transition.

Design decisions:
    - UUIDs as primary keys (no sequential leakage).
    - Decimal for amounts (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for metadata and resolution detail.
    - CHECK constraints on status columns to reject unknown enum values at DB level.
    - version_id_col on mutable rows: a concurrent write raises StaleDataError.
    - No ORM relationships: rows are loaded explicitly through repositories,
      so detached snapshots never trigger lazy loads.
    - escrow_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from escrow_engine.domain.enums import (
    CompensationStatus,
    DisputeStatus,
    EscrowStatus,
    TrustLevel,
    VerificationStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_clause(column: str, values: Iterable[enum.Enum]) -> str:
    joined = ", ".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({joined})"


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite has no timezone storage; values are normalized to UTC on the way in
    and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(
        self, value: datetime | None, dialect: Dialect
    ) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. escrow_transactions
# ---------------------------------------------------------------------------
class EscrowTransaction(Base):
    """Funds held in trust between a buyer and a seller."""

    __tablename__ = "escrow_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(16), nullable=False, default="USDC")
    chain: Mapped[str | None] = mapped_column(String(32), nullable=True)
    escrow_fee: Mapped[Decimal] = mapped_column(
        Numeric(18, 6),
        nullable=False,
        default=Decimal("0"),
        comment="Fee withheld from the seller's release",
    )
    settlement_ref: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Opaque reference from the settlement collaborator (tx hash, address)",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=EscrowStatus.INITIATED.value,
        comment="Current custody state (guarded by EscrowStateMachine)",
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    cancel_consents: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="User ids that have agreed to cancel",
    )
    settlement_pending: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        comment="Settlement call in flight (deposit / release / refund); blocks competing transitions",
    )
    settlement_pending_since: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    evidence_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_clause("status", EscrowStatus), name="ck_escrow_valid_status"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint("buyer_id <> seller_id", name="ck_escrow_distinct_parties"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_buyer", "buyer_id"),
        Index("idx_escrow_seller", "seller_id"),
        Index("idx_escrow_expires_at", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return EscrowStatus(self.status).is_terminal

    def __repr__(self) -> str:
        return (
            f"<EscrowTransaction id={self.id} status={self.status} "
            f"amount={self.amount} {self.token_symbol}>"
        )


# ---------------------------------------------------------------------------
# 2. escrow_proofs
# ---------------------------------------------------------------------------
class EscrowProof(Base):
    """A piece of delivery evidence. Immutable once verified."""

    __tablename__ = "escrow_proofs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_transactions.id"), nullable=False
    )
    submitter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    proof_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_ref: Mapped[str | None] = mapped_column(
        String(512),
        nullable=True,
        comment="Opaque pointer to externally stored content",
    )
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_proof_transaction", "escrow_transaction_id"),
        Index("idx_proof_submitted_at", "submitted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowProof id={self.id} transaction={self.escrow_transaction_id} "
            f"type={self.proof_type} verified={self.verified}>"
        )


# ---------------------------------------------------------------------------
# 3. escrow_disputes
# ---------------------------------------------------------------------------
class EscrowDispute(Base):
    """A disagreement on a transaction, decided by arbitration."""

    __tablename__ = "escrow_disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_transactions.id"), nullable=False
    )
    initiator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(24), nullable=False, default=DisputeStatus.OPENED.value
    )

    # --- Arbitration outcome ---
    resolution: Mapped[str | None] = mapped_column(String(32), nullable=True)
    decision_source: Mapped[str | None] = mapped_column(String(16), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    compensation_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    arbitration_assessment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolution_detail: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Refund/release split written once at resolution",
    )

    # --- Retry bookkeeping ---
    arbitration_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_arbitration_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    settlement_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_settlement_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )
    evidence_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_clause("status", DisputeStatus), name="ck_dispute_valid_status"),
        Index("idx_dispute_transaction", "escrow_transaction_id"),
        Index("idx_dispute_status", "status"),
        # At most one open dispute per transaction
        Index(
            "uq_dispute_open_per_transaction",
            "escrow_transaction_id",
            unique=True,
            postgresql_where=text("status <> 'CLOSED'"),
            sqlite_where=text("status <> 'CLOSED'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowDispute id={self.id} transaction={self.escrow_transaction_id} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 4. user_reputations
# ---------------------------------------------------------------------------
class UserReputation(Base):
    """Per-user counters; overall_score and trust_level are derived from them."""

    __tablename__ = "user_reputations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    overall_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    positive_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    negative_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    disputes_initiated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    disputes_lost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    strike_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cooldown_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    trust_level: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TrustLevel.NEW.value
    )
    verification_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VerificationStatus.UNVERIFIED.value
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "overall_score >= 0 AND overall_score <= 1", name="ck_reputation_score_range"
        ),
        CheckConstraint(_in_clause("trust_level", TrustLevel), name="ck_reputation_trust_level"),
        CheckConstraint(
            _in_clause("verification_status", VerificationStatus),
            name="ck_reputation_verification_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UserReputation user={self.user_id} score={self.overall_score} "
            f"level={self.trust_level}>"
        )


# ---------------------------------------------------------------------------
# 5. transaction_ratings
# ---------------------------------------------------------------------------
class TransactionRating(Base):
    """A party's 1-5 rating of its counterparty after settlement."""

    __tablename__ = "transaction_ratings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_transactions.id"), nullable=False
    )
    rater_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rated_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("escrow_transaction_id", "rater_id", name="uq_rating_per_rater"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),
        CheckConstraint("rater_id <> rated_user_id", name="ck_rating_not_self"),
        Index("idx_rating_rated_user", "rated_user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionRating transaction={self.escrow_transaction_id} "
            f"{self.rater_id}->{self.rated_user_id} rating={self.rating}>"
        )


# ---------------------------------------------------------------------------
# 6. compensation_records
# ---------------------------------------------------------------------------
class CompensationRecord(Base):
    """A remedy owed to a user; processed externally and reported back."""

    __tablename__ = "compensation_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    related_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    related_entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CompensationStatus.PENDING.value
    )
    settlement_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            _in_clause("status", CompensationStatus), name="ck_compensation_valid_status"
        ),
        CheckConstraint("amount > 0", name="ck_compensation_positive_amount"),
        Index("idx_compensation_user", "user_id"),
        Index(
            "uq_compensation_per_entity",
            "related_entity_type",
            "related_entity_id",
            "user_id",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CompensationRecord id={self.id} user={self.user_id} "
            f"amount={self.amount} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 7. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of every state transition of a transaction or dispute.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrow_transactions.id"),
        nullable=False,
        comment="The escrow transaction this event belongs to",
    )
    dispute_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("escrow_disputes.id"),
        nullable=True,
        comment="Set for dispute sub-lifecycle events",
    )

    # --- Event Details ---
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., TRANSACTION_FUNDED, DISPUTE_RESOLVED)",
    )
    old_status: Mapped[str | None] = mapped_column(
        String(24),
        nullable=True,
        comment="Status before this event (null for creation)",
    )
    new_status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        comment="Status after this event",
    )
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (user id or SYSTEM)",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Arbitrary context: settlement ref, arbitration record, error detail",
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_event_transaction", "escrow_transaction_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (EscrowTransaction, EscrowDispute, UserReputation, CompensationRecord):
    event.listen(_model, "before_update", _set_updated_at)
