"""
BaseService -- abstract base for the ledger's write services.

Responsibility:
    Common constructor and session contract.  Every service receives a
    SQLAlchemy ``Session`` and persists through ``session.flush()``; it
    never commits or rolls back.

Architecture position:
    Kernel > Services.  The unit-of-work owner is
    ``escrow_services.orchestrator.EscrowOrchestrator`` (or a test harness).

Failure modes:
    - A subclass that commits breaks the atomicity of split, sweep and
      reversal units.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from escrow_kernel.db.base import Base
from escrow_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a ``Session`` and an optional ``Clock``; flushes within the
        caller's transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models; those live in
          ``escrow_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
