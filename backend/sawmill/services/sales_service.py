# Overview: Sale coordinator; allocates, decrements lots, writes the note and posts its cash.

"""
Sale transaction coordinator.

WHY: A sale touches three ledgers at once (lots, sale notes, cash drawer).
Either all of them change or none do.

FLOW (one unit of work):
1. Lock the site's open shift; a cash sale without one is refused
2. Allocate every line before writing anything (reserved map across lines)
3. Insert the header with a temporary folio, flush, derive NV-00042
4. Re-check and decrement each picked lot under lock (SALE_EXIT movements)
5. Post the cash income (ATOMIC) or queue it in the outbox (DEFERRED)

In DEFERRED mode the income is posted by a second unit after the sale
commits. If that second unit fails the sale stands and the caller gets
CashReconciliationPendingError; reconcile_pending_cash_postings retries.
"""

from __future__ import annotations

import logging
import uuid

from flask import current_app

from ..errors import (
    CashDrawerClosedError,
    CashReconciliationPendingError,
    NotFoundError,
    SawmillError,
    ShiftClosedError,
    SiteAccessError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    CashMovementKind,
    CashPostingOutbox,
    CashShift,
    PaymentMethod,
    Product,
    Sale,
    SaleLine,
    SaleLineAllocation,
    StockLot,
)
from ..models.cash import OUTBOX_PENDING, OUTBOX_POSTED
from ..models.sales import PLACEHOLDER_FOLIO_PREFIX, SALE_POSTED, format_folio
from ..time_utils import utcnow
from ..validation import require_amount_cents, require_choice, require_list, require_positive_int
from .allocation_service import allocate
from .cash_shift_service import append_cash_movement, lock_open_shift
from .concurrency import lock_for_update, unit_of_work
from .stock_ledger_service import decrement_for_exit


logger = logging.getLogger(__name__)


def _parse_lines(lines) -> list[dict]:
    lines = require_list(lines, "lines")
    parsed = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("Each line must be an object", details={"index": index})
        parsed.append({
            "product_id": require_positive_int(line.get("product_id"), "product_id"),
            "quantity": require_positive_int(line.get("quantity"), "quantity"),
            "unit_price_cents": require_amount_cents(
                line.get("unit_price_cents"), "unit_price_cents", allow_zero=True
            ),
            "allocation": line.get("allocation") or None,
        })
    return parsed


def _cash_posting_mode() -> str:
    return current_app.config.get("CASH_POSTING_MODE", "ATOMIC")


def _sale_ack(sale: Sale) -> dict:
    return {"sale_id": sale.id, "folio": sale.folio, "total_cents": sale.total_cents}


def _create_sale_inner(
    site_id: int,
    principal_id: int,
    client_id: int,
    payment_method: PaymentMethod,
    lines: list[dict],
    deferred: bool,
) -> tuple[Sale, int | None]:
    shift = lock_open_shift(site_id)
    if payment_method == PaymentMethod.CASH and shift is None:
        raise CashDrawerClosedError("Cash drawer is closed; open a shift before selling in cash")

    for line in lines:
        product = db.session.query(Product).filter_by(id=line["product_id"], site_id=site_id).first()
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": line["product_id"]})

    # Decide every pick before the first write
    reserved: dict[int, int] = {}
    for line in lines:
        line["picks"] = allocate(
            site_id,
            line["product_id"],
            line["quantity"],
            explicit_picks=line["allocation"],
            reserved=reserved,
        )

    sale = Sale(
        site_id=site_id,
        shift_id=shift.id if shift is not None else None,
        folio=f"{PLACEHOLDER_FOLIO_PREFIX}{uuid.uuid4().hex[:16]}",
        client_id=client_id,
        payment_method=payment_method,
        is_paid=payment_method.collected_on_sale,
        status=SALE_POSTED,
        total_cents=0,
        created_by_principal_id=principal_id,
        created_at=utcnow(),
    )
    db.session.add(sale)
    db.session.flush()  # Get ID for the folio
    sale.folio = format_folio(sale.id)

    total = 0
    for line in lines:
        line_total = line["quantity"] * line["unit_price_cents"]
        sale_line = SaleLine(
            product_id=line["product_id"],
            quantity=line["quantity"],
            unit_price_cents=line["unit_price_cents"],
            line_total_cents=line_total,
        )
        sale.lines.append(sale_line)
        db.session.flush()

        for pick in line["picks"]:
            lot = db.session.get(StockLot, pick.lot_id)
            movement = decrement_for_exit(lot, pick.quantity, sale.id, principal_id)
            sale_line.allocations.append(SaleLineAllocation(
                lot_id=pick.lot_id,
                quantity=pick.quantity,
                movement_id=movement.id,
            ))
        total += line_total

    sale.total_cents = total
    db.session.flush()

    outbox_id = None
    if payment_method == PaymentMethod.CASH and total > 0:
        description = f"Sale {sale.folio}"
        if deferred:
            entry = CashPostingOutbox(
                sale_id=sale.id,
                site_id=site_id,
                shift_id=shift.id,
                amount_cents=total,
                description=description,
                status=OUTBOX_PENDING,
                attempts=0,
            )
            db.session.add(entry)
            db.session.flush()
            outbox_id = entry.id
        else:
            append_cash_movement(
                shift,
                CashMovementKind.SALE_INCOME,
                total,
                description,
                sale_id=sale.id,
            )

    return sale, outbox_id


def create_sale(site_id: int, principal_id: int, client_id, payment_method, lines) -> Sale:
    """
    Register a sale note.

    lines: [{product_id, quantity, unit_price_cents, allocation?}] where
    allocation is an optional explicit list of {lot_id, quantity} picks.

    Raises:
        ValidationError / AllocationMismatchError: bad input, nothing written
        CashDrawerClosedError: cash sale with no open shift
        InsufficientStockError: stock ran out (retryable)
        CashReconciliationPendingError: DEFERRED mode only; the sale is saved
            but its cash income is not posted yet
    """
    client_id = require_positive_int(client_id, "client_id")
    payment_method = require_choice(payment_method, PaymentMethod, "payment_method")
    parsed = _parse_lines(lines)
    deferred = _cash_posting_mode() == "DEFERRED"

    with unit_of_work("create sale"):
        sale, outbox_id = _create_sale_inner(
            site_id, principal_id, client_id, payment_method, parsed, deferred
        )

    ack = _sale_ack(sale)
    logger.info(
        "Sale %s (%s) saved for site %s: %s cents via %s",
        ack["folio"], ack["sale_id"], site_id, ack["total_cents"], payment_method.value,
    )

    if outbox_id is not None:
        try:
            _post_outbox_entry(outbox_id)
        except SawmillError as exc:
            logger.warning("Cash posting for sale %s is pending: %s", ack["folio"], exc.message)
            _note_outbox_failure(outbox_id, exc.message)
            raise CashReconciliationPendingError(
                "Sale saved; cash income is pending reconciliation",
                sale=ack,
                details={"outbox_id": outbox_id},
            ) from exc

    return sale


# =============================================================================
# DEFERRED CASH POSTING
# =============================================================================

def _post_outbox_entry(entry_id: int) -> None:
    """Turn one pending outbox row into a SALE_INCOME movement."""
    with unit_of_work("post sale cash"):
        entry = lock_for_update(db.session.query(CashPostingOutbox).filter_by(id=entry_id)).first()
        if entry is None or entry.status != OUTBOX_PENDING:
            return

        shift = lock_for_update(db.session.query(CashShift).filter_by(id=entry.shift_id)).first()
        if shift is None or not shift.is_open:
            raise ShiftClosedError(
                "The shift this sale belongs to is closed; reconcile manually",
                details={"shift_id": entry.shift_id, "sale_id": entry.sale_id},
            )

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


def _record_outbox_failure(entry_id: int, message: str) -> None:
    with unit_of_work("record cash posting failure"):
        entry = db.session.get(CashPostingOutbox, entry_id)
        if entry is not None and entry.status == OUTBOX_PENDING:
            entry.attempts += 1
            entry.last_error = (message or "")[:255]


def _note_outbox_failure(entry_id: int, message: str) -> None:
    """
    Best-effort bookkeeping after a failed posting. The row stays PENDING
    either way, so a storage failure here is logged and not raised.
    """
    try:
        _record_outbox_failure(entry_id, message)
    except SawmillError as exc:
        logger.error("Could not record failure of cash posting %s: %s", entry_id, exc.message)


def list_pending_cash_postings(site_id: int) -> list[CashPostingOutbox]:
    return (
        db.session.query(CashPostingOutbox)
        .filter(CashPostingOutbox.site_id == site_id, CashPostingOutbox.status == OUTBOX_PENDING)
        .order_by(CashPostingOutbox.id.asc())
        .all()
    )


def reconcile_pending_cash_postings(site_id: int) -> dict:
    """
    Retry every pending cash posting of a site. Safe to run repeatedly:
    posting is idempotent on (sale_id, SALE_INCOME).

    A row whose shift has closed in the meantime stays PENDING with its
    last_error set; an operator has to book it by hand.
    """
    posted, failed = [], []
    for entry_id in [e.id for e in list_pending_cash_postings(site_id)]:
        try:
            _post_outbox_entry(entry_id)
            posted.append(entry_id)
        except SawmillError as exc:
            logger.warning("Cash posting %s still pending: %s", entry_id, exc.message)
            _note_outbox_failure(entry_id, exc.message)
            failed.append(entry_id)
    return {"posted": posted, "failed": failed}


# =============================================================================
# READS
# =============================================================================

def get_sale(site_id: int, sale_id: int) -> Sale:
    """
    Raises:
        NotFoundError: no such sale
        SiteAccessError: the sale belongs to another site
    """
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    if sale.site_id != site_id:
        raise SiteAccessError("Sale belongs to another site", details={"sale_id": sale_id})
    return sale


def list_sales(site_id: int, limit: int = 100) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter(Sale.site_id == site_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
