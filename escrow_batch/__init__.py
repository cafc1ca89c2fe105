"""Periodic ledger jobs: escrow release sweep, scheduler loop, CLI."""

from escrow_batch.release_sweep import EscrowReleaseSweep, SweepResult
from escrow_batch.scheduler import EscrowScheduler

__all__ = [
    "EscrowReleaseSweep",
    "SweepResult",
    "EscrowScheduler",
]
