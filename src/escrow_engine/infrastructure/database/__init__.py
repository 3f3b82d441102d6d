"""Database infrastructure — engine, ORM models, repositories and the ledger store."""

from escrow_engine.infrastructure.database.engine import (
    build_engine,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
    make_session_factory,
)
from escrow_engine.infrastructure.database.ledger import LedgerStore, UnitOfWork
from escrow_engine.infrastructure.database.orm_models import (
    Base,
    CompensationRecord,
    EscrowDispute,
    EscrowEvent,
    EscrowProof,
    EscrowTransaction,
    TransactionRating,
    UserReputation,
)

__all__ = [
    "Base",
    "CompensationRecord",
    "EscrowDispute",
    "EscrowEvent",
    "EscrowProof",
    "EscrowTransaction",
    "LedgerStore",
    "TransactionRating",
    "UnitOfWork",
    "UserReputation",
    "build_engine",
    "close_db",
    "create_tables",
    "get_session_factory",
    "init_db",
    "make_session_factory",
]
