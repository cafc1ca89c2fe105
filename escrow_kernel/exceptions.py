"""
Typed Exception Hierarchy for the Escrow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (webhook handlers, operator tooling, the release
scheduler) need to react to failures by KIND, not by message text:

  - a duplicate webhook is a silent success,
  - a transient lock conflict is retried,
  - an over-allocated sale goes to a human.

Every exception therefore:
  1. Has its own class (catch by type, not message)
  2. Carries a static CODE attribute (machine-readable, API-safe)
  3. Stores its context as attributes (structured logs survive)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    EscrowKernelError (base)
    |
    +-- SplitError
    |   +-- DuplicateProcessingError      (no-op signal, not a failure)
    |   +-- NegativeNetAllocationError    (manual financial review)
    |   +-- SaleNotConfirmedError
    |   +-- InvalidPriorAllocationError   (manual financial review)
    |
    +-- SaleError
    |   +-- SaleNotFoundError
    |   +-- InvalidSaleStateError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |
    +-- ConcurrencyError
    |   +-- AccountRaceConflictError      (transient, retry the unit)
    |
    +-- ReconciliationError
    |   +-- AmbiguousMatchError           (operator must choose)
    |   +-- NoMatchFoundError
    |   +-- IncomingTransactionNotFoundError
    |   +-- IncomingTransactionStateError
    |
    +-- ReversalError
    |   +-- NothingToReverseError
    |   +-- InvalidReversalAmountError
    |
    +-- LedgerStateError
    |   +-- InvalidStatusTransitionError
    |
    +-- CollaboratorError
    |   +-- CollaboratorTimeoutError      (sale stays unconfirmed)
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |
    +-- ConfigurationError
        +-- InvalidFeeConfigurationError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENCY (DuplicateProcessingError is success):

    try:
        split_service.process_sale(sale_id)
    except DuplicateProcessingError:
        pass  # already split by an earlier delivery

2. TRANSIENT CONFLICTS (retry the whole unit, never a fragment):

    except AccountRaceConflictError:
        session.rollback()
        retry()

3. OPERATOR QUEUES (never auto-correct):

    except NegativeNetAllocationError as e:
        review_queue.push(e.sale_id, e.tenant_net_cents)
    except AmbiguousMatchError as e:
        show_choices(e.incoming_id, e.candidate_sale_ids)
"""


class EscrowKernelError(Exception):
    """
    Base exception for all escrow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ESCROW_KERNEL_ERROR"


# Split-related exceptions


class SplitError(EscrowKernelError):
    """Base exception for split computation errors."""

    code: str = "SPLIT_ERROR"


class DuplicateProcessingError(SplitError):
    """Sale has already been split (idempotent success)."""

    code: str = "DUPLICATE_PROCESSING"

    def __init__(self, sale_id: str, reason: str = "already_split"):
        self.sale_id = sale_id
        self.reason = reason
        super().__init__(f"Sale {sale_id} already processed: {reason}")


class NegativeNetAllocationError(SplitError):
    """
    Deductions exceed the allocation base; the tenant net would be negative.

    Fatal to automatic processing. Retrying reproduces the same arithmetic,
    so the sale is flagged for manual financial review instead.
    """

    code: str = "NEGATIVE_NET_ALLOCATION"

    def __init__(
        self,
        sale_id: str,
        base_cents: int,
        deductions_cents: int,
        tenant_net_cents: int,
    ):
        self.sale_id = sale_id
        self.base_cents = base_cents
        self.deductions_cents = deductions_cents
        self.tenant_net_cents = tenant_net_cents
        super().__init__(
            f"Negative tenant net for sale {sale_id}: base={base_cents}, "
            f"deductions={deductions_cents}, net={tenant_net_cents}"
        )


class SaleNotConfirmedError(SplitError):
    """Split requested for a sale that is not payment_confirmed."""

    code: str = "SALE_NOT_CONFIRMED"

    def __init__(self, sale_id: str, status: str):
        self.sale_id = sale_id
        self.status = status
        super().__init__(
            f"Sale {sale_id} is '{status}', expected 'payment_confirmed'"
        )


class InvalidPriorAllocationError(SplitError):
    """
    A checkout attribution names a role the split computes itself.

    Only affiliates and co-producers are attributed before confirmation;
    a platform or tenant attribution would credit the same account twice.
    Like a negative net, the sale goes to manual financial review.
    """

    code: str = "INVALID_PRIOR_ALLOCATION"

    def __init__(self, sale_id: str, role: str, owner_ref: str):
        self.sale_id = sale_id
        self.role = role
        self.owner_ref = owner_ref
        super().__init__(
            f"Sale {sale_id} has a pre-existing allocation for '{role}:{owner_ref}'; "
            f"that role cannot be attributed before confirmation"
        )


# Sale-related exceptions


class SaleError(EscrowKernelError):
    """Base exception for sale lookups and transitions."""

    code: str = "SALE_ERROR"


class SaleNotFoundError(SaleError):
    """Sale with given ID was not found."""

    code: str = "SALE_NOT_FOUND"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")


class InvalidSaleStateError(SaleError):
    """Sale is in a state that does not admit the requested operation."""

    code: str = "INVALID_SALE_STATE"

    def __init__(self, sale_id: str, status: str, operation: str):
        self.sale_id = sale_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} sale {sale_id} in status '{status}'"
        )


# Account-related exceptions


class AccountError(EscrowKernelError):
    """Base exception for virtual account errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Virtual account with given ID was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Virtual account not found: {account_id}")


class ConcurrencyError(EscrowKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class AccountRaceConflictError(ConcurrencyError):
    """
    Concurrent writers collided on a virtual account.

    Transient. The caller retries the whole split/reversal unit.
    """

    code: str = "ACCOUNT_RACE_CONFLICT"

    def __init__(self, account_ref: str, detail: str = ""):
        self.account_ref = account_ref
        self.detail = detail
        super().__init__(
            f"Concurrent modification of virtual account {account_ref}"
            + (f": {detail}" if detail else "")
        )


# Reconciliation exceptions


class ReconciliationError(EscrowKernelError):
    """Base exception for payment reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class AmbiguousMatchError(ReconciliationError):
    """More than one open sale fits the incoming payment."""

    code: str = "AMBIGUOUS_MATCH"

    def __init__(self, incoming_id: str, candidate_sale_ids: list[str]):
        self.incoming_id = incoming_id
        self.candidate_sale_ids = candidate_sale_ids
        super().__init__(
            f"Incoming transaction {incoming_id} matches "
            f"{len(candidate_sale_ids)} sales; operator choice required"
        )


class NoMatchFoundError(ReconciliationError):
    """No open sale fits the incoming payment."""

    code: str = "NO_MATCH_FOUND"

    def __init__(self, incoming_id: str):
        self.incoming_id = incoming_id
        super().__init__(f"No matching sale for incoming transaction {incoming_id}")


class IncomingTransactionNotFoundError(ReconciliationError):
    """Incoming transaction with given ID was not found."""

    code: str = "INCOMING_TRANSACTION_NOT_FOUND"

    def __init__(self, incoming_id: str):
        self.incoming_id = incoming_id
        super().__init__(f"Incoming transaction not found: {incoming_id}")


class IncomingTransactionStateError(ReconciliationError):
    """Incoming transaction is no longer pending."""

    code: str = "INCOMING_TRANSACTION_STATE"

    def __init__(self, incoming_id: str, status: str):
        self.incoming_id = incoming_id
        self.status = status
        super().__init__(
            f"Incoming transaction {incoming_id} is '{status}', expected 'pending'"
        )


# Reversal exceptions


class ReversalError(EscrowKernelError):
    """Base exception for refund/chargeback reversal errors."""

    code: str = "REVERSAL_ERROR"


class NothingToReverseError(ReversalError):
    """Sale has no posted, non-reversed credits."""

    code: str = "NOTHING_TO_REVERSE"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale {sale_id} has no credits to reverse")


class InvalidReversalAmountError(ReversalError):
    """Reported refund/chargeback amount is not positive or exceeds the sale."""

    code: str = "INVALID_REVERSAL_AMOUNT"

    def __init__(self, sale_id: str, amount_cents: int, gross_total_cents: int):
        self.sale_id = sale_id
        self.amount_cents = amount_cents
        self.gross_total_cents = gross_total_cents
        super().__init__(
            f"Invalid reversal amount {amount_cents} for sale {sale_id} "
            f"(gross total {gross_total_cents})"
        )


# Ledger state exceptions


class LedgerStateError(EscrowKernelError):
    """Base exception for illegal ledger line mutations."""

    code: str = "LEDGER_STATE_ERROR"


class InvalidStatusTransitionError(LedgerStateError):
    """Virtual transaction status may only move forward."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, transaction_id: str, from_status: str, to_status: str):
        self.transaction_id = transaction_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Transaction {transaction_id} cannot move "
            f"'{from_status}' -> '{to_status}'"
        )


# Collaborator exceptions


class CollaboratorError(EscrowKernelError):
    """Base exception for external collaborator failures."""

    code: str = "COLLABORATOR_ERROR"


class CollaboratorTimeoutError(CollaboratorError):
    """External gateway/bank call did not answer in time."""

    code: str = "COLLABORATOR_TIMEOUT"

    def __init__(self, collaborator: str, timeout_seconds: float):
        self.collaborator = collaborator
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Collaborator '{collaborator}' did not respond within {timeout_seconds}s"
        )


# Currency exceptions


class CurrencyError(EscrowKernelError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Invalid ISO 4217 currency code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Configuration exceptions


class ConfigurationError(EscrowKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidFeeConfigurationError(ConfigurationError):
    """Fee/escrow configuration failed validation."""

    code: str = "INVALID_FEE_CONFIGURATION"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            f"Invalid escrow configuration: {len(errors)} error(s): "
            + "; ".join(errors)
        )
