"""Typed errors raised by the ledger services.

Every error carries a machine-readable ``code`` and a human-readable message
with the exact offending values. The HTTP layer maps each class to a status.
"""

from decimal import Decimal
from typing import Union


def format_amount(value: Union[Decimal, int, float, str]) -> str:
    """Render an amount without trailing zero cents (``100.00`` -> ``100``)."""
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return str(amount.quantize(Decimal("1")))
    return str(amount.normalize())


class LedgerError(Exception):
    """Base exception for all ledger failures."""

    code: str = "LEDGER_ERROR"
    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LedgerError):
    """Request data violates an accounting rule."""

    code = "VALIDATION_ERROR"
    status_code = 400


class RefundAmountError(ValidationError):
    """A refund exceeds the original or the cumulative refundable amount."""

    code = "REFUND_AMOUNT_EXCEEDED"

    def __init__(self, message: str, requested_total: Decimal, original_amount: Decimal):
        self.requested_total = requested_total
        self.original_amount = original_amount
        super().__init__(message)


class NotFoundError(LedgerError):
    """A referenced period or transaction does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class StateConflictError(LedgerError):
    """The operation is not allowed in the entity's current state."""

    code = "STATE_CONFLICT"
    status_code = 409


class PendingTransactionsError(StateConflictError):
    """Pending incomes or outcomes block a period close."""

    code = "PENDING_TRANSACTIONS"

    def __init__(self, pending_incomes: int, pending_outcomes: int):
        self.pending_incomes = pending_incomes
        self.pending_outcomes = pending_outcomes
        parts = []
        if pending_incomes:
            parts.append(f"{pending_incomes} ingresos pendientes")
        if pending_outcomes:
            parts.append(f"{pending_outcomes} egresos pendientes")
        super().__init__(
            f"Hay {' y '.join(parts)} en este período. "
            "Confírmalos o cancélalos antes de cerrar."
        )
