"""Orchestration layer: unit-of-work boundaries over the escrow kernel."""

from escrow_services.gateway import GatewayVerifier, call_with_timeout
from escrow_services.orchestrator import (
    AutoMatchReport,
    EscrowOrchestrator,
    MatchOutcome,
    ReversalOutcome,
    SplitOutcome,
    SplitOutcomeStatus,
)

__all__ = [
    "GatewayVerifier",
    "call_with_timeout",
    "AutoMatchReport",
    "EscrowOrchestrator",
    "MatchOutcome",
    "ReversalOutcome",
    "SplitOutcome",
    "SplitOutcomeStatus",
]
