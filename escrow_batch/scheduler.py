"""
EscrowScheduler -- in-process polling loop for the ledger's periodic jobs.

Contract:
    Runs a fixed set of named jobs (the release sweep and, when enabled,
    the auto-match pass) every ``interval_seconds``.  ``tick()`` runs each
    job once and is public for testing; ``start()``/``stop()`` drive a
    background thread.

Architecture: escrow_batch.  Jobs own their own units of work; the
    scheduler only sequences them and isolates their failures.

Invariants enforced:
    - A failing job is logged and does not prevent the others from running.
    - Graceful shutdown: the stop signal is checked between jobs and the
      loop never sleeps past it.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from escrow_kernel.logging_config import get_logger

logger = get_logger("batch.scheduler")

Job = Callable[[], Any]


class EscrowScheduler:
    """In-process polling scheduler.

    Non-goals:
        - NOT a distributed scheduler (no leader election); concurrent
          sweeps are tolerated through SKIP LOCKED, not prevented.
    """

    def __init__(
        self,
        jobs: dict[str, Job],
        interval_seconds: float = 300,
    ):
        if not jobs:
            raise ValueError("EscrowScheduler needs at least one job")
        self._jobs = dict(jobs)
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> dict[str, Any]:
        """Run every job once.  Failed jobs map to ``None``."""
        results: dict[str, Any] = {}
        for name, job in self._jobs.items():
            if self._stop_event.is_set():
                break
            try:
                results[name] = job()
            except Exception:
                logger.exception("scheduler_job_failed", extra={"job_name": name})
                results[name] = None
            else:
                logger.info("scheduler_job_completed", extra={"job_name": name})
        return results

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escrow-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"interval_seconds": self._interval, "jobs": self.job_names},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_forever(self) -> None:
        """Run the loop in the calling thread until ``stop()``."""
        self._stop_event.clear()
        self._run_loop()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
