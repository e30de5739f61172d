# Overview: Domain error taxonomy shared by services and routes.

"""
Error taxonomy.

- ValidationError (400): bad input, rejected before any write.
- NotFoundError (404) / SiteAccessError (403): callers branch on these
  separately from validation problems.
- ConflictError (409): state conflicts. `retryable` tells the caller whether
  trying again later can succeed (a stock race) or whether an operator has to
  act first (open a shift).
- CashReconciliationPendingError (202): the sale was saved but its cash entry
  was not; the drawer needs a manual or CLI reconciliation.
- StorageUnavailableError / UnitOfWorkTimeoutError (503): the unit of work
  was aborted and rolled back; nothing was persisted.
"""

from __future__ import annotations


class SawmillError(Exception):
    """Base class for errors that routes translate into JSON responses."""

    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(SawmillError, ValueError):
    """400-level input problem."""

    status_code = 400
    code = "validation_error"


class AllocationMismatchError(ValidationError):
    """Explicit lot picks do not exactly cover the requested quantity."""

    code = "allocation_mismatch"


class NotFoundError(SawmillError):
    status_code = 404
    code = "not_found"


class SiteAccessError(SawmillError):
    """The record exists but belongs to another site."""

    status_code = 403
    code = "not_owned_by_site"


class ConflictError(SawmillError):
    """409-level business rule conflict."""

    status_code = 409
    code = "conflict"


class InsufficientStockError(ConflictError):
    """Not enough pieces at commit time. Usually a race; retry later."""

    code = "insufficient_stock"
    retryable = True


class ConcurrentUpdateError(ConflictError):
    code = "concurrent_update"
    retryable = True


class CashDrawerClosedError(ConflictError):
    """Policy violation: an operator must open a shift first."""

    code = "cash_drawer_closed"


class ShiftAlreadyOpenError(ConflictError):
    code = "shift_already_open"


class ShiftClosedError(ConflictError):
    code = "shift_closed"


class LedgerImmutableError(SawmillError):
    """Raised when code tries to update or delete an append-only ledger row."""

    code = "ledger_immutable"


class CashReconciliationPendingError(SawmillError):
    """Sale committed, cash entry still pending."""

    status_code = 202
    code = "cash_reconciliation_pending"

    def __init__(self, message: str, *, sale: dict, details: dict | None = None):
        super().__init__(message, details)
        self.sale = sale

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["sale"] = self.sale
        data["cash_reconciliation"] = "PENDING"
        return data


class StorageUnavailableError(SawmillError):
    status_code = 503
    code = "storage_unavailable"


class UnitOfWorkTimeoutError(StorageUnavailableError):
    code = "unit_of_work_timeout"
