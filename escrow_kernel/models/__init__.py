"""ORM models for the escrow ledger."""

from escrow_kernel.models.incoming_transaction import (
    IncomingStatus,
    IncomingTransaction,
    MatchMethod,
)
from escrow_kernel.models.sale import (
    ConfirmationSource,
    ReviewStatus,
    Sale,
    SaleItem,
    SaleStatus,
    SplitAttribution,
)
from escrow_kernel.models.virtual_account import VirtualAccount
from escrow_kernel.models.virtual_transaction import (
    ALLOWED_TRANSITIONS,
    ReversalKind,
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)

__all__ = [
    "IncomingStatus",
    "IncomingTransaction",
    "MatchMethod",
    "ConfirmationSource",
    "ReviewStatus",
    "Sale",
    "SaleItem",
    "SaleStatus",
    "SplitAttribution",
    "VirtualAccount",
    "ALLOWED_TRANSITIONS",
    "ReversalKind",
    "TransactionStatus",
    "TransactionType",
    "VirtualTransaction",
]
