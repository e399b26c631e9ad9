"""
Ledger exceptions.

Every error the engine raises carries an error code and the HTTP status the
API layer should answer with. Degraded cases such as a missing FX snapshot
are reported as data in the summary and never raised.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for settlement engine errors."""

    error_code = "ERR_LEDGER"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidExpenseError(LedgerError):
    """Raised when an expense or its shares break an input invariant."""

    error_code = "ERR_VALIDATION"
    status_code = 422


class ConsistencyError(LedgerError):
    """Raised when balances handed to the optimizer do not sum to zero."""

    error_code = "ERR_CONSISTENCY"
    status_code = 500


class SettlementNotFoundError(LedgerError):
    """Raised when a settlement id is unknown to the store."""

    error_code = "ERR_NOT_FOUND"
    status_code = 404

    def __init__(self, settlement_id: str):
        super().__init__(
            f"Settlement {settlement_id} not found",
            details={"settlement_id": settlement_id},
        )


class SettlementPermissionError(LedgerError):
    """Raised when the actor is neither the payer nor the payee of a settlement."""

    error_code = "ERR_PERMISSION"
    status_code = 403


class SettlementStateError(LedgerError):
    """Raised when a settlement is already settled."""

    error_code = "ERR_STATE"
    status_code = 409


class StoreError(LedgerError):
    """Raised when the persistence layer fails. The original error is chained."""

    error_code = "ERR_STORE"
    status_code = 502


class TripNotFoundError(LedgerError):
    """Raised when the trip whose ledger is requested does not exist."""

    error_code = "ERR_NOT_FOUND"
    status_code = 404

    def __init__(self, trip_id: str):
        super().__init__(f"Trip {trip_id} not found", details={"trip_id": trip_id})
