"""
Module: escrow_kernel.selectors.incoming_selector
Responsibility: Read path for incoming payments awaiting or past
    reconciliation.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from escrow_kernel.exceptions import IncomingTransactionNotFoundError
from escrow_kernel.models.incoming_transaction import (
    IncomingStatus,
    IncomingTransaction,
    MatchMethod,
)
from escrow_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class IncomingTransactionView:
    incoming_id: UUID
    amount_cents: int
    interest_cents: int
    currency: str
    source_channel: str
    external_reference: str | None
    payer_name: str | None
    payer_document: str | None
    payer_email: str | None
    observed_at: datetime
    status: IncomingStatus
    matched_sale_id: UUID | None
    match_method: MatchMethod | None
    ignore_reason: str | None


def to_view(row: IncomingTransaction) -> IncomingTransactionView:
    return IncomingTransactionView(
        incoming_id=row.id,
        amount_cents=row.amount_cents,
        interest_cents=row.interest_cents,
        currency=row.currency,
        source_channel=row.source_channel,
        external_reference=row.external_reference,
        payer_name=row.payer_name,
        payer_document=row.payer_document,
        payer_email=row.payer_email,
        observed_at=row.observed_at,
        status=row.status,
        matched_sale_id=row.matched_sale_id,
        match_method=row.match_method,
        ignore_reason=row.ignore_reason,
    )


class IncomingSelector(BaseSelector[IncomingTransaction]):

    def get(self, incoming_id: UUID) -> IncomingTransactionView:
        row = self.session.get(IncomingTransaction, incoming_id)
        if row is None:
            raise IncomingTransactionNotFoundError(str(incoming_id))
        return to_view(row)

    def pending_ids(self, limit: int | None = None) -> list[UUID]:
        """Pending incoming ids, oldest observation first."""
        stmt = (
            select(IncomingTransaction.id)
            .where(IncomingTransaction.status == IncomingStatus.PENDING)
            .order_by(IncomingTransaction.observed_at, IncomingTransaction.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def list_by_status(self, status: IncomingStatus) -> list[IncomingTransactionView]:
        rows = self.session.execute(
            select(IncomingTransaction)
            .where(IncomingTransaction.status == status)
            .order_by(IncomingTransaction.observed_at)
        ).scalars().all()
        return [to_view(r) for r in rows]
