"""
Bounded calls to external collaborators (payment gateway, bank feeds).

A collaborator call runs on a worker thread and is abandoned after
``timeout_seconds``.  Abandoning means the ledger writes nothing and the
sale stays unconfirmed; the worker itself may still finish in the
background.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TypeVar
from uuid import UUID

from escrow_kernel.exceptions import CollaboratorTimeoutError
from escrow_kernel.logging_config import get_logger

logger = get_logger("services.gateway")

T = TypeVar("T")

# Answers whether the gateway considers the sale paid.
GatewayVerifier = Callable[[UUID], bool]


def call_with_timeout(
    collaborator: str,
    func: Callable[[], T],
    timeout_seconds: float,
) -> T:
    """Run ``func`` and return its result, or raise CollaboratorTimeoutError."""
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"collab-{collaborator}")
    try:
        future = pool.submit(func)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "collaborator_timeout",
                extra={"collaborator": collaborator, "timeout_seconds": timeout_seconds},
            )
            raise CollaboratorTimeoutError(collaborator, timeout_seconds) from None
    finally:
        pool.shutdown(wait=False)
