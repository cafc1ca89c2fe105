"""Kernel services: flush-only writers of the escrow ledger."""

from escrow_kernel.services.account_service import VirtualAccountService
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.reconciliation_service import (
    PayerIdentity,
    ReconciliationService,
)
from escrow_kernel.services.reversal_service import (
    NegativeBalance,
    ReversalResult,
    ReversalService,
)
from escrow_kernel.services.split_service import SplitResult, SplitService

__all__ = [
    "BaseService",
    "VirtualAccountService",
    "PayerIdentity",
    "ReconciliationService",
    "NegativeBalance",
    "ReversalResult",
    "ReversalService",
    "SplitResult",
    "SplitService",
]
