from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    CARD = "CARD"
    CREDIT = "CREDIT"

    @property
    def collected_on_sale(self) -> bool:
        """Credit sales are billed now and collected later."""
        return self is not PaymentMethod.CREDIT


def _payment_method_column():
    return db.Column(
        db.Enum(PaymentMethod, native_enum=False, length=16, validate_strings=True),
        nullable=False,
        index=True,
    )


SALE_POSTED = "POSTED"
SALE_CANCELLED = "CANCELLED"

# Prefix of the temporary folio written before the id is known;
# replaced in the same unit of work
PLACEHOLDER_FOLIO_PREFIX = "PENDING-"


def format_folio(sale_id: int) -> str:
    return f"NV-{sale_id:05d}"


class Sale(db.Model):
    """
    Sale note header.

    The folio is derived from the generated id (NV-00042), so the header is
    inserted with a placeholder folio, flushed, and then renamed.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("site_id", "folio", name="uq_sales_site_folio"),
        db.Index("ix_sales_site_status_created", "site_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True, index=True)

    folio = db.Column(db.String(32), nullable=False)
    client_id = db.Column(db.Integer, nullable=False, index=True)
    payment_method = _payment_method_column()
    is_paid = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_POSTED, index=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_principal_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Cancellation audit trail (FLAG policy)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_principal_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    # Deleting a sale removes allocations, then lines, then the header
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "site_id": self.site_id,
            "shift_id": self.shift_id,
            "folio": self.folio,
            "client_id": self.client_id,
            "payment_method": self.payment_method.value,
            "is_paid": self.is_paid,
            "status": self.status,
            "total_cents": self.total_cents,
            "created_by_principal_id": self.created_by_principal_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_principal_id": self.cancelled_by_principal_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale note."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    allocations = db.relationship(
        "SaleLineAllocation",
        back_populates="sale_line",
        cascade="all, delete-orphan",
        order_by="SaleLineAllocation.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "allocation": [a.to_dict() for a in self.allocations],
        }


class SaleLineAllocation(db.Model):
    """Which lot (and how many pieces of it) satisfied a sale line."""
    __tablename__ = "sale_line_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("stock_lots.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    sale_line = db.relationship("SaleLine", back_populates="allocations")

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "movement_id": self.movement_id,
        }
