# Overview: Cancels sales and expenses by appending compensating stock and cash movements.

"""
Cancellation compensator.

WHY: Cancelling must put the pieces back in the exact lots they left and
take the money back out of the drawer, without rewriting any ledger row.
Every effect of the original operation is undone by a new movement.

POLICIES (CANCELLATION_POLICY, overridable per call):
- DELETE: after compensating, the sale (header, lines, allocations) or the
  expense is removed. The movements keep their plain sale_id/expense_id
  reference, so the history survives.
- FLAG: the record stays with status CANCELLED and who/when/why.

CASH OUTCOMES (sales paid in cash):
- DISCARDED_PENDING: the income was still in the outbox; it is discarded
- POSTED: a SALE_CANCELLATION_OUTFLOW was appended to the open shift
- SKIPPED_NO_OPEN_SHIFT: no open shift to take the money from; logged
- NOT_APPLICABLE: not a paid cash sale
"""

from __future__ import annotations

import logging

from flask import current_app

from ..config import CANCELLATION_POLICIES
from ..errors import ConflictError, NotFoundError, SiteAccessError, ValidationError
from ..extensions import db
from ..models import CashMovementKind, CashPostingOutbox, Expense, InventoryMovement, PaymentMethod, Sale
from ..models.cash import OUTBOX_DISCARDED, OUTBOX_PENDING
from ..models.expenses import EXPENSE_ACTIVE, EXPENSE_CANCELLED
from ..models.sales import SALE_CANCELLED
from ..models.stock import MOVEMENT_SALE_EXIT, MOVEMENT_SALE_RETURN
from ..time_utils import utcnow
from ..validation import optional_str
from .cash_shift_service import append_cash_movement, lock_open_shift
from .concurrency import lock_for_update, unit_of_work
from .stock_ledger_service import increment_for_return


logger = logging.getLogger(__name__)


CASH_NOT_APPLICABLE = "NOT_APPLICABLE"
CASH_DISCARDED_PENDING = "DISCARDED_PENDING"
CASH_POSTED = "POSTED"
CASH_SKIPPED_NO_OPEN_SHIFT = "SKIPPED_NO_OPEN_SHIFT"


def _resolve_policy(policy) -> str:
    value = policy or current_app.config.get("CANCELLATION_POLICY", "DELETE")
    value = str(value).strip().upper()
    if value not in CANCELLATION_POLICIES:
        raise ValidationError(
            f"policy must be one of: {', '.join(CANCELLATION_POLICIES)}",
            details={"field": "policy", "value": policy},
        )
    return value


def _reverse_stock_exits(sale: Sale, principal_id: int) -> list[InventoryMovement]:
    """Append a SALE_RETURN for every exit of the sale not already reversed."""
    exits = (
        db.session.query(InventoryMovement)
        .filter(
            InventoryMovement.sale_id == sale.id,
            InventoryMovement.kind == MOVEMENT_SALE_EXIT,
        )
        .order_by(InventoryMovement.id.asc())
        .all()
    )
    if not exits:
        return []

    reversed_ids = {
        row.reversal_of_id
        for row in db.session.query(InventoryMovement.reversal_of_id).filter(
            InventoryMovement.kind == MOVEMENT_SALE_RETURN,
            InventoryMovement.reversal_of_id.in_([m.id for m in exits]),
        )
    }

    returns = []
    for exit_movement in exits:
        if exit_movement.id in reversed_ids:
            continue
        returns.append(increment_for_return(
            exit_movement.lot_id,
            -exit_movement.pieces_delta,
            exit_movement.origin_location,
            principal_id,
            sale_id=sale.id,
            reversal_of_id=exit_movement.id,
        ))
    return returns


def _compensate_sale_cash(site_id: int, sale_id: int, folio: str, total_cents: int) -> str:
    pending = (
        db.session.query(CashPostingOutbox)
        .filter(CashPostingOutbox.sale_id == sale_id, CashPostingOutbox.status == OUTBOX_PENDING)
        .first()
    )
    if pending is not None:
        # Income never reached the drawer; nothing to take back out
        pending.status = OUTBOX_DISCARDED
        pending.last_error = "Sale cancelled before cash was posted"
        return CASH_DISCARDED_PENDING

    shift = lock_open_shift(site_id)
    if shift is None:
        logger.warning(
            "Sale %s cancelled with no open shift; %s cents were not taken out of the drawer",
            folio, total_cents,
        )
        return CASH_SKIPPED_NO_OPEN_SHIFT

    append_cash_movement(
        shift,
        CashMovementKind.SALE_CANCELLATION_OUTFLOW,
        total_cents,
        f"Cancellation of sale {folio}",
        sale_id=sale_id,
    )
    return CASH_POSTED


def cancel_sale(site_id: int, sale_id: int, principal_id: int, reason=None, policy=None) -> dict:
    """
    Cancel a sale: return its pieces, compensate its cash, then delete or flag it.

    Raises:
        NotFoundError: no such sale
        SiteAccessError: the sale belongs to another site
        ConflictError: already cancelled (FLAG policy)
    """
    policy = _resolve_policy(policy)
    reason = optional_str(reason, "reason")

    with unit_of_work("cancel sale"):
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})
        if sale.site_id != site_id:
            raise SiteAccessError("Sale belongs to another site", details={"sale_id": sale_id})
        if sale.status == SALE_CANCELLED:
            raise ConflictError("Sale is already cancelled", details={"sale_id": sale_id})

        folio = sale.folio
        total_cents = sale.total_cents
        cash_paid = sale.payment_method == PaymentMethod.CASH and sale.is_paid

        returns = _reverse_stock_exits(sale, principal_id)

        if policy == "DELETE":
            db.session.delete(sale)
        else:
            sale.status = SALE_CANCELLED
            sale.cancelled_at = utcnow()
            sale.cancelled_by_principal_id = principal_id
            sale.cancel_reason = reason
        db.session.flush()

        if cash_paid and total_cents > 0:
            cash_outcome = _compensate_sale_cash(site_id, sale_id, folio, total_cents)
        else:
            cash_outcome = CASH_NOT_APPLICABLE

        returned = [m.id for m in returns]

    logger.info(
        "Cancelled sale %s (%s) for site %s; %s lots restocked; cash %s",
        folio, policy, site_id, len(returned), cash_outcome,
    )
    return {
        "cancelled": True,
        "sale_id": sale_id,
        "folio": folio,
        "policy": policy,
        "returned_movements": returned,
        "cash_compensation": cash_outcome,
    }


def cancel_expense(site_id: int, expense_id: int, principal_id: int, policy=None) -> dict:
    """
    Cancel an expense. A paid cash expense puts its money back in the open
    shift's drawer (EXPENSE_CANCELLATION_INCOME).

    Raises:
        NotFoundError / SiteAccessError / ConflictError as for sales
    """
    policy = _resolve_policy(policy)

    with unit_of_work("cancel expense"):
        expense = lock_for_update(db.session.query(Expense).filter_by(id=expense_id)).first()
        if expense is None:
            raise NotFoundError("Expense not found", details={"expense_id": expense_id})
        if expense.site_id != site_id:
            raise SiteAccessError("Expense belongs to another site", details={"expense_id": expense_id})
        if expense.status != EXPENSE_ACTIVE:
            raise ConflictError("Expense is already cancelled", details={"expense_id": expense_id})

        cash_outcome = CASH_NOT_APPLICABLE
        if expense.payment_method == PaymentMethod.CASH and expense.is_paid:
            shift = lock_open_shift(site_id)
            if shift is None:
                logger.warning(
                    "Expense %s cancelled with no open shift; %s cents were not returned to the drawer",
                    expense_id, expense.amount_cents,
                )
                cash_outcome = CASH_SKIPPED_NO_OPEN_SHIFT
            else:
                append_cash_movement(
                    shift,
                    CashMovementKind.EXPENSE_CANCELLATION_INCOME,
                    expense.amount_cents,
                    f"Cancellation of expense {expense_id}",
                    expense_id=expense_id,
                )
                cash_outcome = CASH_POSTED

        if policy == "DELETE":
            db.session.delete(expense)
        else:
            expense.status = EXPENSE_CANCELLED
            expense.cancelled_at = utcnow()
            expense.cancelled_by_principal_id = principal_id

    logger.info("Cancelled expense %s (%s) for site %s; cash %s", expense_id, policy, site_id, cash_outcome)
    return {
        "cancelled": True,
        "expense_id": expense_id,
        "policy": policy,
        "cash_compensation": cash_outcome,
    }
