"""Read-only selectors returning frozen DTOs."""

from escrow_kernel.selectors.account_selector import (
    AccountBalanceDTO,
    AccountInvariantReport,
    AccountSelector,
)
from escrow_kernel.selectors.base import BaseSelector
from escrow_kernel.selectors.incoming_selector import (
    IncomingSelector,
    IncomingTransactionView,
)
from escrow_kernel.selectors.split_selector import (
    BreakdownLine,
    SplitBreakdown,
    SplitSelector,
    StatementLine,
)

__all__ = [
    "AccountBalanceDTO",
    "AccountInvariantReport",
    "AccountSelector",
    "BaseSelector",
    "IncomingSelector",
    "IncomingTransactionView",
    "BreakdownLine",
    "SplitBreakdown",
    "SplitSelector",
    "StatementLine",
]
