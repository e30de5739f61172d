# Overview: Model registry; importing this package registers every table and the ledger guard.

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..errors import LedgerImmutableError
from .sites import Site, Product
from .stock import StockLot, InventoryMovement, StockLocation
from .cash import CashShift, CashMovement, CashMovementKind, CashPostingOutbox
from .sales import Sale, SaleLine, SaleLineAllocation, PaymentMethod
from .expenses import Expense

__all__ = [
    'Site', 'Product',
    'StockLot', 'InventoryMovement', 'StockLocation',
    'CashShift', 'CashMovement', 'CashMovementKind', 'CashPostingOutbox',
    'Sale', 'SaleLine', 'SaleLineAllocation', 'PaymentMethod',
    'Expense',
]


# Ledger tables: rows are written once and never changed.
# Corrections are new rows (a SALE_RETURN, a SALE_CANCELLATION_OUTFLOW...).
APPEND_ONLY_MODELS = (InventoryMovement, CashMovement)


@event.listens_for(Session, "before_flush")
def _reject_ledger_rewrites(session, flush_context, instances):
    for obj in session.deleted:
        if isinstance(obj, APPEND_ONLY_MODELS):
            raise LedgerImmutableError(
                f"{type(obj).__name__} rows are append-only and cannot be deleted",
                details={"table": obj.__tablename__, "id": obj.id},
            )
    for obj in session.dirty:
        if isinstance(obj, APPEND_ONLY_MODELS) and session.is_modified(obj, include_collections=False):
            raise LedgerImmutableError(
                f"{type(obj).__name__} rows are append-only and cannot be updated",
                details={"table": obj.__tablename__, "id": obj.id},
            )
