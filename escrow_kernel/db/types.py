"""
Module: escrow_kernel.db.types
Responsibility: currency validation and the enum column type shared
    by every model.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Enum columns store ``.value`` strings, never native DB enums.
    - validate_currency() rejects anything that is not a known ISO 4217 code.
"""

from enum import Enum

from sqlalchemy import Enum as SAEnum

from escrow_kernel.exceptions import InvalidCurrencyError

# Currencies accepted at the ingestion boundary.
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "ARS", "AUD", "BOB", "BRL", "CAD", "CHF", "CLP", "CNY", "COP", "CZK",
    "DKK", "EUR", "GBP", "HKD", "HUF", "IDR", "ILS", "INR", "JPY", "KRW",
    "MXN", "MYR", "NOK", "NZD", "PEN", "PHP", "PLN", "PYG", "RON", "SEK",
    "SGD", "THB", "TRY", "TWD", "USD", "UYU", "ZAR",
})


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a known ISO 4217 code.

    Returns:
        The validated currency code (uppercase).

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if len(normalized) != 3 or normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)

    return normalized


def enum_type(enum_cls: type[Enum], length: int = 30) -> SAEnum:
    """VARCHAR-backed enum column that stores ``.value`` and loads members."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
