# Overview: Stock lot ledger; every piece change on a lot goes through here.

"""
Stock ledger.

WHY: Lots are the only place stock lives. Keeping every mutation in one module
lets each one append its movement row in the same unit of work, so the
non-TRANSFER movements of a product's lots always sum to its stock on hand.
A single lot's own rows do not replay to its count: a TRANSFER is written on
the destination lot only and names the source lot in its note.

MOVEMENT SHAPE:
- PRODUCTION_IN / RECEIPT_IN: +pieces, origin NULL (from outside)
- TRANSFER: +pieces on the destination lot, origin = source location,
  note "Moved from lot <id>" when the source lot is a different row
- SALE_EXIT: -pieces, destination NULL (left the sawmill)
- SALE_RETURN: +pieces, origin NULL, reversal_of_id = the exit it undoes,
  note "Returned for lot <id>" when the exit's lot had moved away
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product, StockLocation, StockLot
from ..models.stock import (
    MOVEMENT_PRODUCTION_IN,
    MOVEMENT_RECEIPT_IN,
    MOVEMENT_SALE_EXIT,
    MOVEMENT_SALE_RETURN,
    MOVEMENT_TRANSFER,
)
from ..time_utils import parse_business_date, utcnow
from ..validation import require_choice, require_list, require_positive_int
from .concurrency import lock_for_update, unit_of_work


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MoveResult:
    affected_lot_id: int
    new_quantity_at_destination: int
    movement_id: int

    def to_dict(self) -> dict:
        return {
            "affected_lot_id": self.affected_lot_id,
            "new_quantity_at_destination": self.new_quantity_at_destination,
            "movement_id": self.movement_id,
        }


def _append_movement(
    lot: StockLot,
    kind: str,
    pieces_delta: int,
    principal_id: int,
    *,
    origin: StockLocation | None = None,
    destination: StockLocation | None = None,
    sale_id: int | None = None,
    reversal_of_id: int | None = None,
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> InventoryMovement:
    movement = InventoryMovement(
        site_id=lot.site_id,
        lot_id=lot.id,
        principal_id=principal_id,
        kind=kind,
        pieces_delta=pieces_delta,
        origin_location=origin,
        destination_location=destination,
        sale_id=sale_id,
        reversal_of_id=reversal_of_id,
        note=note,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _lock_lot(site_id: int, lot_id: int) -> StockLot:
    """Locked read of a lot of this site. Another site's lot is reported as missing."""
    lot = lock_for_update(
        db.session.query(StockLot).filter_by(id=lot_id, site_id=site_id)
    ).first()
    if lot is None:
        raise NotFoundError("Lot not found", details={"lot_id": lot_id})
    return lot


def _require_product(site_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, site_id=site_id).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _find_compatible_lot(source: StockLot, destination: StockLocation) -> StockLot | None:
    """
    A lot at the destination with the same lineage as the source:
    same product, same ingress timestamp, same sawing order (NULL-safe).
    """
    query = db.session.query(StockLot).filter(
        StockLot.site_id == source.site_id,
        StockLot.product_id == source.product_id,
        StockLot.location == destination,
        StockLot.ingress_at == source.ingress_at,
        StockLot.id != source.id,
    )
    if source.origin_order_id is None:
        query = query.filter(StockLot.origin_order_id.is_(None))
    else:
        query = query.filter(StockLot.origin_order_id == source.origin_order_id)
    return lock_for_update(query.order_by(StockLot.id.asc())).first()


def _move_lot_inner(
    site_id: int,
    lot_id: int,
    destination: StockLocation,
    quantity: int,
    principal_id: int,
) -> MoveResult:
    source = _lock_lot(site_id, lot_id)

    if source.location == destination:
        raise ValidationError(
            "Destination must differ from the lot's current location",
            details={"lot_id": lot_id, "location": destination.value},
        )
    if quantity > source.pieces:
        raise ValidationError(
            "Cannot move more pieces than the lot holds",
            details={"lot_id": lot_id, "requested": quantity, "available": source.pieces},
        )

    origin = source.location
    compatible = _find_compatible_lot(source, destination)

    if compatible is not None:
        # Merge into the existing lot; a full move closes the source out at 0
        compatible.pieces += quantity
        source.pieces -= quantity
        target = compatible
    elif quantity == source.pieces:
        # Whole lot moves: relocate the row itself
        source.location = destination
        target = source
    else:
        target = StockLot(
            site_id=source.site_id,
            product_id=source.product_id,
            location=destination,
            pieces=quantity,
            ingress_at=source.ingress_at,
            origin_order_id=source.origin_order_id,
        )
        db.session.add(target)
        source.pieces -= quantity

    db.session.flush()

    movement = _append_movement(
        target,
        MOVEMENT_TRANSFER,
        quantity,
        principal_id,
        origin=origin,
        destination=destination,
        note=f"Moved from lot {source.id}" if target.id != source.id else None,
    )

    logger.info(
        "Moved %s pieces of lot %s from %s to %s (lot %s)",
        quantity, source.id, origin.value, destination.value, target.id,
    )
    return MoveResult(
        affected_lot_id=target.id,
        new_quantity_at_destination=target.pieces,
        movement_id=movement.id,
    )


def move_lot(site_id: int, lot_id: int, destination, quantity, principal_id: int) -> MoveResult:
    """
    Move some or all pieces of a lot to another location.

    Raises:
        ValidationError: bad quantity/destination, same location, too many pieces
        NotFoundError: lot missing or owned by another site
    """
    quantity = require_positive_int(quantity, "quantity")
    destination = require_choice(destination, StockLocation, "destination")

    with unit_of_work("move lot"):
        return _move_lot_inner(site_id, lot_id, destination, quantity, principal_id)


def decrement_for_exit(lot: StockLot, quantity: int, sale_id: int, principal_id: int) -> InventoryMovement:
    """
    Take pieces out of a lot for a sale. Must run inside the sale's unit of work.

    The lot is re-read under lock and re-checked: the allocation that picked it
    may have been computed before a competing sale committed.
    """
    locked = _lock_lot(lot.site_id, lot.id)
    if locked.pieces < quantity:
        raise InsufficientStockError(
            "Stock changed while the sale was being saved; not enough pieces left",
            details={"lot_id": locked.id, "requested": quantity, "available": locked.pieces},
        )

    origin = locked.location
    locked.pieces -= quantity
    return _append_movement(
        locked,
        MOVEMENT_SALE_EXIT,
        -quantity,
        principal_id,
        origin=origin,
        destination=None,
        sale_id=sale_id,
    )


def increment_for_return(
    lot_id: int,
    quantity: int,
    returned_to_location: StockLocation | None,
    principal_id: int,
    sale_id: int | None = None,
    reversal_of_id: int | None = None,
) -> InventoryMovement:
    """
    Put pieces back where they left from (sale cancellation).

    The original lot takes them only while it still sits at that location.
    A lot moved since the sale hands the return to a compatible lot at the
    old location, or to a new lot of the same lineage opened there.
    """
    lot = lock_for_update(db.session.query(StockLot).filter_by(id=lot_id)).first()
    if lot is None:
        raise NotFoundError("Lot not found", details={"lot_id": lot_id})

    location = returned_to_location or lot.location
    target = lot
    if lot.location != location:
        target = _find_compatible_lot(lot, location)
        if target is None:
            target = StockLot(
                site_id=lot.site_id,
                product_id=lot.product_id,
                location=location,
                pieces=0,
                ingress_at=lot.ingress_at,
                origin_order_id=lot.origin_order_id,
            )
            db.session.add(target)
            db.session.flush()
        logger.info(
            "Lot %s is at %s now; returning %s pieces to lot %s at %s",
            lot.id, lot.location.value, quantity, target.id, location.value,
        )

    target.pieces += quantity
    return _append_movement(
        target,
        MOVEMENT_SALE_RETURN,
        quantity,
        principal_id,
        origin=None,
        destination=location,
        sale_id=sale_id,
        reversal_of_id=reversal_of_id,
        note=f"Returned for lot {lot.id}" if target.id != lot.id else None,
    )


def register_production(
    site_id: int,
    principal_id: int,
    ingress_at,
    items,
    origin_order_id=None,
) -> list[StockLot]:
    """
    Register finished goods coming off the saws ("producto transformado").

    One new lot per item: {product_id, pieces, location?}. Location defaults
    to PRODUCTION. A bare date is pinned to 12:00 UTC.
    """
    items = require_list(items, "items")
    try:
        ingress = parse_business_date(ingress_at)
    except ValueError:
        raise ValidationError("ingress_at must be an ISO date", details={"field": "ingress_at"})
    if ingress is None:
        raise ValidationError("ingress_at is required", details={"field": "ingress_at"})
    if origin_order_id is not None:
        origin_order_id = require_positive_int(origin_order_id, "origin_order_id")

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        parsed.append((
            require_positive_int(item.get("product_id"), "product_id"),
            require_positive_int(item.get("pieces"), "pieces"),
            require_choice(item.get("location") or StockLocation.PRODUCTION, StockLocation, "location"),
        ))

    with unit_of_work("register production"):
        lots = []
        for product_id, pieces, location in parsed:
            _require_product(site_id, product_id)
            lot = StockLot(
                site_id=site_id,
                product_id=product_id,
                location=location,
                pieces=pieces,
                ingress_at=ingress,
                origin_order_id=origin_order_id,
            )
            db.session.add(lot)
            db.session.flush()
            _append_movement(
                lot,
                MOVEMENT_PRODUCTION_IN,
                pieces,
                principal_id,
                destination=location,
                note=f"Sawing order {origin_order_id}" if origin_order_id else None,
            )
            lots.append(lot)

    logger.info("Registered production of %s lots for site %s", len(lots), site_id)
    return lots


def receive_commercial_goods(
    site_id: int,
    principal_id: int,
    product_id,
    quantity,
    location=StockLocation.WAREHOUSE,
) -> StockLot:
    """
    Receive bought-in goods.

    Merges into the site's existing lot for that product and location with no
    sawing order, refreshing its ingress timestamp; otherwise opens a new lot.
    """
    product_id = require_positive_int(product_id, "product_id")
    quantity = require_positive_int(quantity, "quantity")
    location = require_choice(location, StockLocation, "location")

    with unit_of_work("receive goods"):
        _require_product(site_id, product_id)
        now = utcnow()
        lot = lock_for_update(
            db.session.query(StockLot)
            .filter(
                StockLot.site_id == site_id,
                StockLot.product_id == product_id,
                StockLot.location == location,
                StockLot.origin_order_id.is_(None),
            )
            .order_by(StockLot.id.asc())
        ).first()

        if lot is None:
            lot = StockLot(
                site_id=site_id,
                product_id=product_id,
                location=location,
                pieces=quantity,
                ingress_at=now,
            )
            db.session.add(lot)
        else:
            lot.pieces += quantity
            lot.ingress_at = now
        db.session.flush()

        _append_movement(lot, MOVEMENT_RECEIPT_IN, quantity, principal_id, destination=location, occurred_at=now)

    return lot


def list_available_lots(site_id: int, product_id: int) -> list[StockLot]:
    """Lots of a product with pieces left, in FIFO order (oldest ingress first)."""
    return (
        db.session.query(StockLot)
        .filter(
            StockLot.site_id == site_id,
            StockLot.product_id == product_id,
            StockLot.pieces > 0,
        )
        .order_by(StockLot.ingress_at.asc(), StockLot.id.asc())
        .all()
    )


def list_lots(site_id: int, location=None) -> list[StockLot]:
    query = db.session.query(StockLot).filter(StockLot.site_id == site_id, StockLot.pieces > 0)
    if location is not None:
        query = query.filter(StockLot.location == require_choice(location, StockLocation, "location"))
    return query.order_by(StockLot.ingress_at.asc(), StockLot.id.asc()).all()


def list_lot_movements(site_id: int, lot_id: int) -> list[InventoryMovement]:
    lot = db.session.query(StockLot).filter_by(id=lot_id, site_id=site_id).first()
    if lot is None:
        raise NotFoundError("Lot not found", details={"lot_id": lot_id})
    return (
        db.session.query(InventoryMovement)
        .filter(InventoryMovement.lot_id == lot_id)
        .order_by(InventoryMovement.occurred_at.asc(), InventoryMovement.id.asc())
        .all()
    )
