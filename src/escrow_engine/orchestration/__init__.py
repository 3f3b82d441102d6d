"""Background orchestration — the periodic escrow sweep."""

from escrow_engine.orchestration.sweeper import (
    EscrowSweeper,
    SweepReport,
    start_scheduler,
    stop_scheduler,
)

__all__ = ["EscrowSweeper", "SweepReport", "start_scheduler", "stop_scheduler"]
