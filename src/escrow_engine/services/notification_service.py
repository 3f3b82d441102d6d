"""Notification dispatch — best-effort, after commit.

A failed or slow notifier is logged and dropped. It can never roll back or
block a committed transition.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from escrow_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from escrow_engine.domain.collaborators import (
        NotificationCollaborator,
        TransitionEvent,
    )

logger = get_logger(__name__)


class LoggingNotifier:
    """Default notifier: writes each transition to the structured log."""

    async def publish(self, event: TransitionEvent) -> None:
        logger.info("notification.transition", **event.to_dict())


class NotificationDispatcher:
    """Publishes committed transition events through a NotificationCollaborator."""

    def __init__(
        self,
        notifier: NotificationCollaborator | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._notifier = notifier or LoggingNotifier()
        self._timeout = timeout_seconds

    async def dispatch(self, events: Iterable[TransitionEvent]) -> int:
        """Publish each event; returns how many were delivered."""
        delivered = 0
        for event in events:
            try:
                await asyncio.wait_for(self._notifier.publish(event), timeout=self._timeout)
            except Exception as exc:  # noqa: BLE001 - delivery is best-effort
                logger.warning(
                    "notification.failed",
                    transaction_id=event.transaction_id,
                    to_status=event.to_status,
                    error=repr(exc),
                )
                continue
            delivered += 1
        return delivered
