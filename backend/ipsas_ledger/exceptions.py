"""Typed ledger errors.

Every failure raised by the services belongs to one of six kinds.  Each
kind carries a machine-readable ``code`` and the HTTP status the API layer
answers with, so callers catch by type and never parse messages::

    LedgerError
    +-- NotFoundError        NOT_FOUND        404
    +-- DuplicateKeyError    DUPLICATE_KEY    409
    +-- InvalidInputError    INVALID_INPUT    422
    +-- UnbalancedError      UNBALANCED       422
    +-- InvalidStateError    INVALID_STATE    409
    +-- ConflictError        CONFLICT         409
"""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code: str = "LEDGER_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class NotFoundError(LedgerError):
    """A referenced entity, fund, account or transaction does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} not found: {resource_id}",
            {"resource": resource, "id": str(resource_id)},
        )


class DuplicateKeyError(LedgerError):
    code = "DUPLICATE_KEY"
    status_code = 409


class InvalidInputError(LedgerError):
    code = "INVALID_INPUT"
    status_code = 422


class UnbalancedError(LedgerError):
    """Debits and credits differ by more than the monetary tolerance."""

    code = "UNBALANCED"
    status_code = 422

    def __init__(self, total_debit: Any, total_credit: Any, message: str | None = None) -> None:
        self.total_debit = total_debit
        self.total_credit = total_credit
        super().__init__(
            message or "Journal entry is not balanced",
            {"total_debit": str(total_debit), "total_credit": str(total_credit)},
        )


class InvalidStateError(LedgerError):
    """The operation is not permitted from the record's current status."""

    code = "INVALID_STATE"
    status_code = 409


class ConflictError(LedgerError):
    code = "CONFLICT"
    status_code = 409
