"""
Module: escrow_engines
Responsibility:
    Pure calculation layer: fee primitives, split computation and payment
    matching.  No session, no clock, no I/O; services pass every input in
    and persist the result.

Usage:
    from escrow_engines import SplitEngine, MatchEngine
    from escrow_engines.fees import compute_fee, interest_base
"""

from escrow_engines.fees import (
    compute_fee,
    interest_base,
    percent_of,
    percentage_of_total,
    platform_fee,
    supplier_share,
)
from escrow_engines.matching import (
    IncomingSnapshot,
    MatchCandidate,
    MatchDecision,
    MatchDecisionKind,
    MatchEngine,
    OpenSaleSnapshot,
)
from escrow_engines.split import SplitEngine
from escrow_engines.tracer import traced_engine

__all__ = [
    "compute_fee",
    "interest_base",
    "percent_of",
    "percentage_of_total",
    "platform_fee",
    "supplier_share",
    "IncomingSnapshot",
    "MatchCandidate",
    "MatchDecision",
    "MatchDecisionKind",
    "MatchEngine",
    "OpenSaleSnapshot",
    "SplitEngine",
    "traced_engine",
]
