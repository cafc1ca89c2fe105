"""
Escrow Kernel - payment split and escrow ledger core.

An append-only virtual account ledger with:
- Idempotent split posting per (sale, stakeholder)
- Atomic split units
- Escrow holds released by a periodic sweep
- Explicit reversal for refunds and chargebacks
"""

__version__ = "0.1.0"
