# Overview: Expense receipts (payroll, supplies, freight) and their cash outflows.

from __future__ import annotations

import logging

from ..errors import CashDrawerClosedError, ConflictError, NotFoundError, SiteAccessError, ValidationError
from ..extensions import db
from ..models import CashMovementKind, Expense, PaymentMethod
from ..models.expenses import (
    DEFERRED_PAYMENT_CONCEPTS,
    EXPENSE_ACTIVE,
    EXPENSE_PAID,
    EXPENSE_PENDING,
)
from ..time_utils import parse_business_date, utcnow
from ..validation import optional_str, require_amount_cents, require_choice, require_str
from .cash_shift_service import append_cash_movement, lock_open_shift
from .concurrency import lock_for_update, unit_of_work


logger = logging.getLogger(__name__)


def _pay_from_drawer(site_id: int, expense: Expense) -> None:
    """Attach a paid cash expense to the open shift and take the money out."""
    shift = lock_open_shift(site_id)
    if shift is None:
        raise CashDrawerClosedError("Cash drawer is closed; open a shift before paying in cash")
    expense.shift_id = shift.id
    append_cash_movement(
        shift,
        CashMovementKind.EXPENSE_OUTFLOW,
        expense.amount_cents,
        f"Expense: {expense.concept} - {expense.beneficiary}"[:255],
        expense_id=expense.id,
    )


def create_expense(
    site_id: int,
    principal_id: int,
    beneficiary,
    amount_cents,
    concept,
    detail=None,
    payment_method="CASH",
    issued_at=None,
) -> Expense:
    """
    Record an expense receipt.

    FREIGHT starts PENDING (the carrier is paid later); every other concept is
    paid on the spot. A paid cash expense needs an open shift and takes its
    amount out of the drawer in the same unit of work.
    """
    beneficiary = require_str(beneficiary, "beneficiary")
    amount_cents = require_amount_cents(amount_cents, "amount_cents")
    concept = require_str(concept, "concept", max_length=64).upper()
    detail = optional_str(detail, "detail", max_length=2000)
    payment_method = require_choice(payment_method, PaymentMethod, "payment_method")
    try:
        issued = parse_business_date(issued_at) or utcnow()
    except ValueError:
        raise ValidationError("issued_at must be an ISO date", details={"field": "issued_at"})

    payment_status = EXPENSE_PENDING if concept in DEFERRED_PAYMENT_CONCEPTS else EXPENSE_PAID

    with unit_of_work("create expense"):
        expense = Expense(
            site_id=site_id,
            beneficiary=beneficiary,
            amount_cents=amount_cents,
            concept=concept,
            detail=detail,
            payment_method=payment_method,
            payment_status=payment_status,
            status=EXPENSE_ACTIVE,
            issued_at=issued,
            paid_at=utcnow() if payment_status == EXPENSE_PAID else None,
            created_by_principal_id=principal_id,
        )
        db.session.add(expense)
        db.session.flush()

        if payment_status == EXPENSE_PAID:
            if payment_method == PaymentMethod.CASH:
                _pay_from_drawer(site_id, expense)
            else:
                shift = lock_open_shift(site_id)
                expense.shift_id = shift.id if shift is not None else None

    logger.info("Expense %s (%s, %s cents) recorded for site %s", expense.id, concept, amount_cents, site_id)
    return expense


def get_expense(site_id: int, expense_id: int, *, for_update: bool = False) -> Expense:
    query = db.session.query(Expense).filter_by(id=expense_id)
    if for_update:
        query = lock_for_update(query)
    expense = query.first()
    if expense is None:
        raise NotFoundError("Expense not found", details={"expense_id": expense_id})
    if expense.site_id != site_id:
        raise SiteAccessError("Expense belongs to another site", details={"expense_id": expense_id})
    return expense


def mark_expense_paid(site_id: int, expense_id: int, principal_id: int) -> Expense:
    """
    Settle a PENDING expense (typically freight).

    Raises:
        ConflictError: already paid or cancelled
        CashDrawerClosedError: cash payment with no open shift
    """
    with unit_of_work("pay expense"):
        expense = get_expense(site_id, expense_id, for_update=True)
        if expense.status != EXPENSE_ACTIVE:
            raise ConflictError("Expense is cancelled", details={"expense_id": expense_id})
        if expense.payment_status == EXPENSE_PAID:
            raise ConflictError("Expense is already paid", details={"expense_id": expense_id})

        expense.payment_status = EXPENSE_PAID
        expense.paid_at = utcnow()
        if expense.payment_method == PaymentMethod.CASH:
            _pay_from_drawer(site_id, expense)
        else:
            shift = lock_open_shift(site_id)
            expense.shift_id = shift.id if shift is not None else None

    logger.info("Expense %s paid by principal %s", expense_id, principal_id)
    return expense


def list_expenses(site_id: int, limit: int = 100) -> list[Expense]:
    return (
        db.session.query(Expense)
        .filter(Expense.site_id == site_id)
        .order_by(Expense.issued_at.desc(), Expense.id.desc())
        .limit(limit)
        .all()
    )
