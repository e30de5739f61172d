from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class CashMovementKind(str, enum.Enum):
    """
    Cash drawer movement kinds.

    Each kind declares its own effect on the drawer: +1 adds to the
    theoretical balance, -1 takes from it. A new kind cannot be declared
    without a sign, so the balance replay never needs a separate list of
    "kinds that add" and "kinds that subtract".
    """

    def __new__(cls, code: str, sign: int):
        if sign not in (1, -1):
            raise ValueError(f"cash movement kind {code} must declare sign +1 or -1")
        obj = str.__new__(cls, code)
        obj._value_ = code
        obj.sign = sign
        return obj

    OPENING_FLOAT = ("OPENING_FLOAT", 1)
    SALE_INCOME = ("SALE_INCOME", 1)
    EXPENSE_OUTFLOW = ("EXPENSE_OUTFLOW", -1)
    MANUAL_WITHDRAWAL = ("MANUAL_WITHDRAWAL", -1)
    CORRECTION_INCOME = ("CORRECTION_INCOME", 1)
    CORRECTION_OUTFLOW = ("CORRECTION_OUTFLOW", -1)
    SALE_CANCELLATION_INCOME = ("SALE_CANCELLATION_INCOME", 1)
    SALE_CANCELLATION_OUTFLOW = ("SALE_CANCELLATION_OUTFLOW", -1)
    EXPENSE_CANCELLATION_INCOME = ("EXPENSE_CANCELLATION_INCOME", 1)

    @property
    def increases_balance(self) -> bool:
        return self.sign > 0


# Kinds an operator may record by hand (not tied to a sale or an expense)
MANUAL_KINDS = frozenset({
    CashMovementKind.MANUAL_WITHDRAWAL,
    CashMovementKind.CORRECTION_INCOME,
    CashMovementKind.CORRECTION_OUTFLOW,
})


class CashShift(db.Model):
    """
    One operating period of a site's cash drawer.

    LIFECYCLE:
    - OPEN: closed_at is NULL, movements can be appended
    - CLOSED: counted amount and variance recorded; cannot be reopened

    At most one shift per site may be open. The service checks it at open
    time and the partial unique index backs the check up under races.
    """
    __tablename__ = "cash_shifts"
    __table_args__ = (
        db.Index(
            "uq_cash_shifts_one_open_per_site",
            "site_id",
            unique=True,
            sqlite_where=db.text("closed_at IS NULL"),
            postgresql_where=db.text("closed_at IS NULL"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    # Cash amounts in cents
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    counted_amount_cents = db.Column(db.Integer, nullable=True)  # Set when closing
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - theoretical

    # Totals snapshotted at close for the shift report
    computed_cash_sales_cents = db.Column(db.Integer, nullable=True)
    computed_expenses_cents = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    opened_by_principal_id = db.Column(db.Integer, nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_principal_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    site = db.relationship("Site", backref=db.backref("cash_shifts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    @property
    def status(self) -> str:
        return "OPEN" if self.is_open else "CLOSED"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "status": self.status,
            "opening_float_cents": self.opening_float_cents,
            "counted_amount_cents": self.counted_amount_cents,
            "variance_cents": self.variance_cents,
            "computed_cash_sales_cents": self.computed_cash_sales_cents,
            "computed_expenses_cents": self.computed_expenses_cents,
            "opened_at": to_utc_z(self.opened_at),
            "opened_by_principal_id": self.opened_by_principal_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_principal_id": self.closed_by_principal_id,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Append-only cash ledger entry scoped to a shift.

    amount_cents is always positive; the sign comes from the kind.
    The unique constraints make sale- and expense-linked postings idempotent:
    a sale can be paid in once and compensated once.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_movements_amount_positive"),
        db.UniqueConstraint("sale_id", "kind", name="uq_cash_movements_sale_kind"),
        db.UniqueConstraint("expense_id", "kind", name="uq_cash_movements_expense_kind"),
        db.Index("ix_cash_movements_shift_occurred", "shift_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=False, index=True)
    kind = db.Column(
        db.Enum(CashMovementKind, native_enum=False, length=32, validate_strings=True),
        nullable=False,
        index=True,
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Plain references; the sale or expense may be deleted on cancellation
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    expense_id = db.Column(db.Integer, nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    shift = db.relationship("CashShift", backref=db.backref("movements", lazy=True))

    @property
    def signed_amount_cents(self) -> int:
        return self.kind.sign * self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "kind": self.kind.value,
            "amount_cents": self.amount_cents,
            "signed_amount_cents": self.signed_amount_cents,
            "description": self.description,
            "sale_id": self.sale_id,
            "expense_id": self.expense_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


# CashPostingOutbox.status values
OUTBOX_PENDING = "PENDING"
OUTBOX_POSTED = "POSTED"
OUTBOX_DISCARDED = "DISCARDED"


class CashPostingOutbox(db.Model):
    """
    Cash income owed to a shift by a committed sale (deferred posting mode).

    Written in the same unit of work as the sale. A second unit turns it into
    a SALE_INCOME movement; until then the sale is "cash reconciliation
    pending" and `reconcile_pending_cash_postings` can retry it.
    """
    __tablename__ = "cash_posting_outbox"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, nullable=False, unique=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=OUTBOX_PENDING, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "site_id": self.site_id,
            "shift_id": self.shift_id,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
        }
