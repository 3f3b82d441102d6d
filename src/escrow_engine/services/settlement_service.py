"""Settlement Service — simulated custody movements.

Implements the SettlementCollaborator protocol without touching a real
payment rail. Generates fake transaction hashes, deterministic per
(transaction id, operation) so retried calls return the same reference.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from escrow_engine.domain.collaborators import DepositConfirmation, SettlementReceipt
from escrow_engine.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

logger = get_logger(__name__)


def _fake_hash(*parts: str) -> str:
    digest = hashlib.sha256(":".join(parts).encode()).hexdigest()
    return "0x" + digest


class SimulatedSettlement:
    """Handles escrow funding confirmation and payouts in simulation mode."""

    def __init__(self, confirm_deposits: bool = True) -> None:
        """Initialize the simulated rail.

        Args:
            confirm_deposits: When False, every deposit reports unconfirmed
                (used to exercise the funding guard).
        """
        self._confirm_deposits = confirm_deposits
        self.calls: list[tuple[str, str]] = []

    async def confirm_deposit(self, transaction_id: str) -> DepositConfirmation:
        self.calls.append(("confirm_deposit", transaction_id))
        if not self._confirm_deposits:
            logger.info("settlement.deposit_unconfirmed", transaction_id=transaction_id)
            return DepositConfirmation(confirmed=False)
        ref = _fake_hash(transaction_id, "deposit")
        logger.info(
            "settlement.deposit_simulated",
            transaction_id=transaction_id,
            settlement_ref=ref,
        )
        return DepositConfirmation(confirmed=True, settlement_ref=ref)

    async def release_funds(
        self, transaction_id: str, recipient: str, amount: Decimal
    ) -> SettlementReceipt:
        self.calls.append(("release_funds", transaction_id))
        ref = _fake_hash(transaction_id, "release", recipient)
        logger.info(
            "settlement.release_simulated",
            transaction_id=transaction_id,
            settlement_ref=ref,
            amount=str(amount),
            to=recipient,
        )
        return SettlementReceipt(settlement_ref=ref, recipient=recipient, amount=amount)

    async def refund(
        self, transaction_id: str, recipient: str, amount: Decimal
    ) -> SettlementReceipt:
        self.calls.append(("refund", transaction_id))
        ref = _fake_hash(transaction_id, "refund", recipient)
        logger.info(
            "settlement.refund_simulated",
            transaction_id=transaction_id,
            settlement_ref=ref,
            amount=str(amount),
            to=recipient,
        )
        return SettlementReceipt(settlement_ref=ref, recipient=recipient, amount=amount)
