from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .sales import PaymentMethod


EXPENSE_PENDING = "PENDING"
EXPENSE_PAID = "PAID"

EXPENSE_ACTIVE = "ACTIVE"
EXPENSE_CANCELLED = "CANCELLED"

# Freight is billed by the carrier and paid later; it starts as a debt
DEFERRED_PAYMENT_CONCEPTS = frozenset({"FREIGHT"})


class Expense(db.Model):
    """
    Expense receipt (payroll, supplies, freight...).

    shift_id is the shift the expense was paid in, so it lands in that
    shift's summary. It stays NULL while the expense is still PENDING.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        db.Index("ix_expenses_site_issued", "site_id", "issued_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True, index=True)

    beneficiary = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    concept = db.Column(db.String(64), nullable=False, index=True)
    detail = db.Column(db.Text, nullable=True)
    payment_method = db.Column(
        db.Enum(PaymentMethod, native_enum=False, length=16, validate_strings=True),
        nullable=False,
    )
    payment_status = db.Column(db.String(16), nullable=False, default=EXPENSE_PAID, index=True)
    status = db.Column(db.String(16), nullable=False, default=EXPENSE_ACTIVE, index=True)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_principal_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_principal_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_paid(self) -> bool:
        return self.payment_status == EXPENSE_PAID

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "shift_id": self.shift_id,
            "beneficiary": self.beneficiary,
            "amount_cents": self.amount_cents,
            "concept": self.concept,
            "detail": self.detail,
            "payment_method": self.payment_method.value,
            "payment_status": self.payment_status,
            "status": self.status,
            "issued_at": to_utc_z(self.issued_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "created_by_principal_id": self.created_by_principal_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_principal_id": self.cancelled_by_principal_id,
            "version_id": self.version_id,
        }
