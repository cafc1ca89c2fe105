"""
EscrowReleaseSweep -- promotes held funds once their hold elapses.

Contract:
    Selects ``pending`` credits with ``release_at <= now`` in batches,
    promotes each one (line status and account balance together) and
    commits per batch.  Stops after a short batch or on a stop signal.

Architecture: escrow_batch.  Owns its sessions (one per batch); the
    balance movement itself is ``VirtualAccountService.release_transaction``.

Invariants enforced:
    - Release is a pure function of ``release_at`` and the injected clock.
    - Idempotent: promoted rows no longer match the filter, so re-running
      after an interruption only picks up what is left.
    - Rows locked by a concurrent sweep are skipped (``SKIP LOCKED``).
    - A failed batch is rolled back whole; earlier batches stay committed.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.exceptions import AccountRaceConflictError
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.virtual_transaction import (
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)
from escrow_kernel.services.account_service import VirtualAccountService

logger = get_logger("batch.release_sweep")


@dataclass(frozen=True)
class SweepResult:
    as_of: datetime
    released_count: int
    released_cents: int
    batches: int
    interrupted: bool = False


class EscrowReleaseSweep:
    """Batched pending -> available promotion."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        batch_size: int = 500,
        stop_event: threading.Event | None = None,
    ):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._batch_size = batch_size
        self._stop_event = stop_event or threading.Event()

    def _due_batch(self, session: Session, now: datetime) -> list[VirtualTransaction]:
        return list(
            session.execute(
                select(VirtualTransaction)
                .where(
                    VirtualTransaction.transaction_type == TransactionType.CREDIT,
                    VirtualTransaction.status == TransactionStatus.PENDING,
                    VirtualTransaction.release_at <= now,
                )
                .order_by(VirtualTransaction.release_at, VirtualTransaction.id)
                .limit(self._batch_size)
                .with_for_update(skip_locked=True)
            ).scalars().all()
        )

    def run(self, now: datetime | None = None) -> SweepResult:
        """Release everything due at ``now`` (default: the clock)."""
        now = now or self._clock.now()
        released = 0
        released_cents = 0
        batches = 0
        interrupted = False

        while not self._stop_event.is_set():
            session = self._session_factory()
            try:
                due = self._due_batch(session, now)
                if not due:
                    session.rollback()
                    break
                accounts = VirtualAccountService(session, self._clock)
                batch_cents = 0
                for tx in due:
                    accounts.release_transaction(tx, now)
                    batch_cents += tx.net_cents
                session.commit()
            except AccountRaceConflictError:
                session.rollback()
                logger.warning(
                    "escrow_sweep_batch_conflict",
                    extra={"batch": batches + 1, "as_of": now},
                )
                interrupted = True
                break
            except Exception:
                session.rollback()
                logger.exception("escrow_sweep_batch_failed", extra={"batch": batches + 1})
                raise
            finally:
                session.close()

            batches += 1
            released += len(due)
            released_cents += batch_cents
            logger.info(
                "escrow_sweep_batch_committed",
                extra={"batch": batches, "released": len(due), "as_of": now},
            )
            if len(due) < self._batch_size:
                break
        else:
            interrupted = True

        logger.info(
            "escrow_sweep_completed",
            extra={
                "as_of": now,
                "released_count": released,
                "released_cents": released_cents,
                "batches": batches,
                "interrupted": interrupted,
            },
        )
        return SweepResult(
            as_of=now,
            released_count=released,
            released_cents=released_cents,
            batches=batches,
            interrupted=interrupted,
        )
