# Overview: Cash drawer shifts; opening, movements, balance replay and closing ("corte").

"""
Cash shift service.

WHY: A shift is the period one drawer is accountable for. The theoretical
balance is never stored while the shift runs; it is replayed from the
shift's append-only movements every time it is asked for.

DESIGN PRINCIPLES:
- At most one open shift per site (service check + partial unique index)
- Movements are append-only; the sign comes from the movement kind
- A closed shift is never reopened and accepts no more movements
- Closing appends only the shift's pending deferred sale income; it records counted amount, variance and totals
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import (
    CashDrawerClosedError,
    NotFoundError,
    ShiftAlreadyOpenError,
    ShiftClosedError,
    SiteAccessError,
    ValidationError,
)
from ..extensions import db
from ..models import CashMovement, CashMovementKind, CashPostingOutbox, CashShift, Expense, PaymentMethod, Sale, Site
from ..models.cash import MANUAL_KINDS, OUTBOX_PENDING, OUTBOX_POSTED
from ..models.expenses import EXPENSE_ACTIVE, EXPENSE_PAID
from ..models.sales import SALE_CANCELLED
from ..time_utils import utcnow
from ..validation import optional_str, require_amount_cents, require_choice
from .concurrency import lock_for_update, unit_of_work


logger = logging.getLogger(__name__)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_open_shift(site_id: int) -> CashShift | None:
    """The site's open shift, if any."""
    return (
        db.session.query(CashShift)
        .filter(CashShift.site_id == site_id, CashShift.closed_at.is_(None))
        .first()
    )


def lock_open_shift(site_id: int) -> CashShift | None:
    """Locked variant for use inside a unit of work."""
    return lock_for_update(
        db.session.query(CashShift).filter(CashShift.site_id == site_id, CashShift.closed_at.is_(None))
    ).first()


def get_shift(site_id: int, shift_id: int, *, for_update: bool = False) -> CashShift:
    """
    Raises:
        NotFoundError: no such shift
        SiteAccessError: the shift belongs to another site
    """
    query = db.session.query(CashShift).filter_by(id=shift_id)
    if for_update:
        query = lock_for_update(query)
    shift = query.first()
    if shift is None:
        raise NotFoundError("Shift not found", details={"shift_id": shift_id})
    if shift.site_id != site_id:
        raise SiteAccessError("Shift belongs to another site", details={"shift_id": shift_id})
    return shift


def list_shifts(site_id: int, limit: int = 50) -> list[CashShift]:
    return (
        db.session.query(CashShift)
        .filter(CashShift.site_id == site_id)
        .order_by(CashShift.opened_at.desc(), CashShift.id.desc())
        .limit(limit)
        .all()
    )


def list_movements(shift_id: int) -> list[CashMovement]:
    return (
        db.session.query(CashMovement)
        .filter(CashMovement.shift_id == shift_id)
        .order_by(CashMovement.occurred_at.asc(), CashMovement.id.asc())
        .all()
    )


def theoretical_balance_cents(shift_id: int) -> int:
    """Replay of the shift's movements: sum of sign * amount."""
    return sum(m.signed_amount_cents for m in list_movements(shift_id))


# =============================================================================
# MOVEMENTS
# =============================================================================

def append_cash_movement(
    shift: CashShift,
    kind: CashMovementKind,
    amount_cents: int,
    description: str | None = None,
    *,
    sale_id: int | None = None,
    expense_id: int | None = None,
) -> CashMovement:
    """
    Append one movement to an open shift. Must run inside a unit of work.

    Sale- and expense-linked postings are idempotent: asking twice for the same
    (sale_id, kind) or (expense_id, kind) returns the existing row.

    Raises:
        ShiftClosedError: the shift was closed
        ValidationError: amount not strictly positive
    """
    if not shift.is_open:
        raise ShiftClosedError("Cash shift is closed", details={"shift_id": shift.id})
    amount_cents = require_amount_cents(amount_cents, "amount_cents")

    if sale_id is not None or expense_id is not None:
        query = db.session.query(CashMovement).filter(CashMovement.kind == kind)
        if sale_id is not None:
            query = query.filter(CashMovement.sale_id == sale_id)
        else:
            query = query.filter(CashMovement.expense_id == expense_id)
        existing = query.first()
        if existing is not None:
            logger.info("Cash movement %s for sale=%s expense=%s already posted", kind.value, sale_id, expense_id)
            return existing

    movement = CashMovement(
        shift_id=shift.id,
        kind=kind,
        amount_cents=amount_cents,
        description=description,
        sale_id=sale_id,
        expense_id=expense_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def record_manual_movement(
    site_id: int,
    kind,
    amount_cents,
    description,
    principal_id: int,
) -> CashMovement:
    """
    Withdrawals and corrections entered by an operator.

    Raises:
        ValidationError: kind is not a manual kind, bad amount
        CashDrawerClosedError: no open shift for the site
    """
    kind = require_choice(kind, CashMovementKind, "kind")
    if kind not in MANUAL_KINDS:
        raise ValidationError(
            f"kind must be one of: {', '.join(sorted(k.value for k in MANUAL_KINDS))}",
            details={"field": "kind", "value": kind.value},
        )
    amount_cents = require_amount_cents(amount_cents, "amount_cents")
    description = optional_str(description, "description")

    with unit_of_work("manual cash movement"):
        shift = lock_open_shift(site_id)
        if shift is None:
            raise CashDrawerClosedError("Cash drawer is closed; open a shift first")
        movement = append_cash_movement(shift, kind, amount_cents, description)

    logger.info(
        "Manual cash movement %s of %s cents on shift %s by principal %s",
        kind.value, amount_cents, movement.shift_id, principal_id,
    )
    return movement


# =============================================================================
# OPEN / SUMMARY / CLOSE
# =============================================================================

def open_shift(site_id: int, opening_float_cents, principal_id: int) -> CashShift:
    """
    Open the site's cash drawer.

    A positive opening float is recorded as an OPENING_FLOAT movement so the
    balance replay starts from it. A zero float records no movement.

    Raises:
        ValidationError: negative or non-integer float
        NotFoundError: unknown site
        ShiftAlreadyOpenError: the site already has an open shift
    """
    opening_float_cents = require_amount_cents(opening_float_cents, "opening_float_cents", allow_zero=True)

    with unit_of_work("open shift"):
        if db.session.get(Site, site_id) is None:
            raise NotFoundError("Site not found", details={"site_id": site_id})

        existing = lock_open_shift(site_id)
        if existing is not None:
            raise ShiftAlreadyOpenError(
                "A cash shift is already open for this site",
                details={"shift_id": existing.id},
            )

        shift = CashShift(
            site_id=site_id,
            opening_float_cents=opening_float_cents,
            opened_at=utcnow(),
            opened_by_principal_id=principal_id,
        )
        db.session.add(shift)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Lost the race against another opener; the partial unique index caught it
            raise ShiftAlreadyOpenError("A cash shift is already open for this site") from exc

        if opening_float_cents > 0:
            append_cash_movement(
                shift,
                CashMovementKind.OPENING_FLOAT,
                opening_float_cents,
                "Opening float",
            )

    logger.info("Opened cash shift %s for site %s with float %s", shift.id, site_id, opening_float_cents)
    return shift


def summarize(site_id: int, shift_id: int) -> dict:
    """
    Replay a shift into its summary. Pure read; calling it twice gives the
    same answer.

    Sales counted are the shift's non-cancelled sales (paid, or on credit).
    Expenses counted are the shift's active, paid expenses.
    """
    shift = get_shift(site_id, shift_id)
    movements = list_movements(shift.id)
    balance = sum(m.signed_amount_cents for m in movements)

    sales = (
        db.session.query(Sale)
        .filter(Sale.shift_id == shift.id, Sale.status != SALE_CANCELLED)
        .all()
    )
    counted_sales = [s for s in sales if s.is_paid or s.payment_method == PaymentMethod.CREDIT]

    breakdown = {method.value: 0 for method in PaymentMethod}
    for sale in counted_sales:
        breakdown[sale.payment_method.value] += sale.total_cents

    sales_total = sum(s.total_cents for s in counted_sales)
    sales_collected = sum(s.total_cents for s in counted_sales if s.is_paid)
    sales_credit = sum(s.total_cents for s in counted_sales if s.payment_method == PaymentMethod.CREDIT)

    expenses_total = (
        db.session.query(db.func.coalesce(db.func.sum(Expense.amount_cents), 0))
        .filter(
            Expense.shift_id == shift.id,
            Expense.status == EXPENSE_ACTIVE,
            Expense.payment_status == EXPENSE_PAID,
        )
        .scalar()
    )

    return {
        "shift_id": shift.id,
        "status": shift.status,
        "opening_float_cents": shift.opening_float_cents,
        "theoretical_balance_cents": balance,
        "sales_total_cents": sales_total,
        "sales_collected_cents": sales_collected,
        "sales_credit_cents": sales_credit,
        "sales_count": len(counted_sales),
        "expenses_total_cents": int(expenses_total),
        "operating_result_cents": sales_collected - int(expenses_total),
        "breakdown_by_payment_method": breakdown,
        "movement_history": [m.to_dict() for m in reversed(movements)],
    }


def _settle_pending_sale_income(shift: CashShift) -> int:
    """
    Post the shift's outstanding deferred sale income before it is counted.
    Must run inside the close unit; returns the cents posted.
    """
    pending = lock_for_update(
        db.session.query(CashPostingOutbox)
        .filter(CashPostingOutbox.shift_id == shift.id, CashPostingOutbox.status == OUTBOX_PENDING)
        .order_by(CashPostingOutbox.id.asc())
    ).all()

    settled = 0
    for entry in pending:
        append_cash_movement(
            shift,
            CashMovementKind.SALE_INCOME,
            entry.amount_cents,
            entry.description,
            sale_id=entry.sale_id,
        )
        entry.status = OUTBOX_POSTED
        entry.posted_at = utcnow()
        entry.attempts += 1
        settled += entry.amount_cents

    if pending:
        logger.info("Posted %s pending cash postings (%s cents) before closing shift %s", len(pending), settled, shift.id)
    return settled


def close_shift(
    site_id: int,
    shift_id: int,
    counted_amount_cents,
    principal_id: int,
    notes=None,
) -> dict:
    """
    Close a shift ("corte de caja").

    variance = counted - theoretical. Negative means the drawer is short.
    Deferred sale income still pending for the shift is posted first, since
    the drawer already holds that cash. Nothing else is appended.

    Raises:
        ShiftClosedError: already closed
    """
    counted_amount_cents = require_amount_cents(counted_amount_cents, "counted_amount_cents", allow_zero=True)
    notes = optional_str(notes, "notes", max_length=2000)

    with unit_of_work("close shift"):
        shift = get_shift(site_id, shift_id, for_update=True)
        if not shift.is_open:
            raise ShiftClosedError("Cash shift is already closed", details={"shift_id": shift_id})

        settled = _settle_pending_sale_income(shift)
        summary = summarize(site_id, shift.id)
        theoretical = summary["theoretical_balance_cents"]
        variance = counted_amount_cents - theoretical

        shift.closed_at = utcnow()
        shift.closed_by_principal_id = principal_id
        shift.counted_amount_cents = counted_amount_cents
        shift.variance_cents = variance
        shift.computed_cash_sales_cents = theoretical - shift.opening_float_cents
        shift.computed_expenses_cents = summary["expenses_total_cents"]
        shift.notes = notes
        closed_at = shift.closed_at

    logger.info("Closed cash shift %s for site %s; variance %s cents", shift_id, site_id, variance)
    return {
        "shift_id": shift_id,
        "closed_at": closed_at,
        "theoretical_balance_cents": theoretical,
        "counted_amount_cents": counted_amount_cents,
        "variance_cents": variance,
        "settled_pending_cents": settled,
    }
