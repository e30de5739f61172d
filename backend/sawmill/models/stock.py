from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class StockLocation(str, enum.Enum):
    """Physical places a lot can sit in inside the sawmill."""
    PRODUCTION = "PRODUCTION"
    DRYING = "DRYING"
    WAREHOUSE = "WAREHOUSE"
    SHELF = "SHELF"


# InventoryMovement.kind values
MOVEMENT_PRODUCTION_IN = "PRODUCTION_IN"
MOVEMENT_RECEIPT_IN = "RECEIPT_IN"
MOVEMENT_TRANSFER = "TRANSFER"
MOVEMENT_SALE_EXIT = "SALE_EXIT"
MOVEMENT_SALE_RETURN = "SALE_RETURN"


def _location_column(nullable: bool):
    return db.Column(
        db.Enum(StockLocation, native_enum=False, length=16, validate_strings=True),
        nullable=nullable,
        index=not nullable,
    )


class StockLot(db.Model):
    """
    A quantity of one product sitting at one location.

    INVARIANTS:
    - pieces never goes negative (DB check + service checks)
    - lots are never deleted; an emptied lot stays as a closed-out record
    - location only changes in place on a full move with no compatible lot
      at the destination
    """
    __tablename__ = "stock_lots"
    __table_args__ = (
        db.CheckConstraint("pieces >= 0", name="ck_stock_lots_pieces_non_negative"),
        db.Index("ix_stock_lots_site_product_ingress", "site_id", "product_id", "ingress_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location = _location_column(nullable=False)
    pieces = db.Column(db.Integer, nullable=False, default=0)
    ingress_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Sawing order that produced the lot; null for bought-in goods
    origin_order_id = db.Column(db.Integer, nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockLot id={self.id} product_id={self.product_id} location={self.location} pieces={self.pieces}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "product_id": self.product_id,
            "location": self.location.value if self.location else None,
            "pieces": self.pieces,
            "ingress_at": to_utc_z(self.ingress_at),
            "origin_order_id": self.origin_order_id,
            "version_id": self.version_id,
        }

    def to_availability_dict(self) -> dict:
        return {
            "lot_id": self.id,
            "location": self.location.value,
            "pieces": self.pieces,
            "ingress_at": to_utc_z(self.ingress_at),
        }


class InventoryMovement(db.Model):
    """
    Append-only ledger of piece changes on lots.

    origin_location NULL means the pieces came from outside (production,
    a receipt, a cancelled sale). destination_location NULL means they left
    the sawmill (a sale).

    sale_id is a plain reference, not a foreign key: the movement must
    outlive a sale header that is deleted on cancellation.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("pieces_delta <> 0", name="ck_inventory_movements_nonzero"),
        db.Index("ix_inventory_movements_lot_occurred", "lot_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("stock_lots.id"), nullable=False, index=True)
    principal_id = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(16), nullable=False, index=True)
    pieces_delta = db.Column(db.Integer, nullable=False)
    origin_location = _location_column(nullable=True)
    destination_location = _location_column(nullable=True)
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "lot_id": self.lot_id,
            "principal_id": self.principal_id,
            "kind": self.kind,
            "pieces_delta": self.pieces_delta,
            "origin_location": self.origin_location.value if self.origin_location else None,
            "destination_location": self.destination_location.value if self.destination_location else None,
            "sale_id": self.sale_id,
            "reversal_of_id": self.reversal_of_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
