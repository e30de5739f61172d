# Overview: Decides which lots satisfy a sale line (explicit picks or FIFO).

"""
Allocation engine.

Pure decision step: reads lots, never writes them. The sale coordinator
re-checks every pick under lock when it actually decrements.

`reserved` maps lot_id -> pieces already promised to earlier lines of the same
sale, so two lines of one product never count the same pieces twice.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import AllocationMismatchError, InsufficientStockError, ValidationError
from ..extensions import db
from ..models import StockLot
from ..validation import require_positive_int


@dataclass(frozen=True)
class Allocation:
    lot_id: int
    quantity: int

    def to_dict(self) -> dict:
        return {"lot_id": self.lot_id, "quantity": self.quantity}


def _available(lot: StockLot, reserved: dict[int, int]) -> int:
    return lot.pieces - reserved.get(lot.id, 0)


def _merge_picks(explicit_picks) -> dict[int, int]:
    """Normalize [{lot_id, quantity}, ...] and merge repeated lot ids (order preserved)."""
    if not isinstance(explicit_picks, list) or not explicit_picks:
        raise ValidationError("allocation must be a non-empty list", details={"field": "allocation"})
    merged: dict[int, int] = {}
    for pick in explicit_picks:
        if not isinstance(pick, dict):
            raise ValidationError("Each allocation entry must be an object", details={"field": "allocation"})
        lot_id = require_positive_int(pick.get("lot_id"), "lot_id")
        quantity = require_positive_int(pick.get("quantity"), "quantity")
        merged[lot_id] = merged.get(lot_id, 0) + quantity
    return merged


def _allocate_explicit(
    site_id: int,
    product_id: int,
    required_quantity: int,
    explicit_picks,
    reserved: dict[int, int],
) -> list[Allocation]:
    merged = _merge_picks(explicit_picks)

    lots = {
        lot.id: lot
        for lot in db.session.query(StockLot).filter(StockLot.id.in_(list(merged))).all()
    }

    allocations = []
    for lot_id, quantity in merged.items():
        lot = lots.get(lot_id)
        if lot is None or lot.site_id != site_id or lot.product_id != product_id:
            raise AllocationMismatchError(
                "Allocation mismatch: lot does not hold this product",
                details={"lot_id": lot_id, "product_id": product_id},
            )
        available = _available(lot, reserved)
        if quantity > available:
            raise AllocationMismatchError(
                "Allocation mismatch: pick exceeds the lot's pieces",
                details={"lot_id": lot_id, "requested": quantity, "available": available},
            )
        allocations.append(Allocation(lot_id=lot_id, quantity=quantity))

    total = sum(a.quantity for a in allocations)
    if total != required_quantity:
        raise AllocationMismatchError(
            "Allocation mismatch: picks must add up to the line quantity",
            details={"product_id": product_id, "allocated": total, "required": required_quantity},
        )
    return allocations


def _allocate_fifo(
    site_id: int,
    product_id: int,
    required_quantity: int,
    reserved: dict[int, int],
) -> list[Allocation]:
    candidates = (
        db.session.query(StockLot)
        .filter(
            StockLot.site_id == site_id,
            StockLot.product_id == product_id,
            StockLot.pieces > 0,
        )
        .order_by(StockLot.ingress_at.asc(), StockLot.id.asc())
        .all()
    )

    total_available = sum(max(_available(lot, reserved), 0) for lot in candidates)
    if total_available < required_quantity:
        raise InsufficientStockError(
            "Insufficient stock for product",
            details={
                "product_id": product_id,
                "requested": required_quantity,
                "available": total_available,
            },
        )

    allocations = []
    remaining = required_quantity
    for lot in candidates:
        if remaining == 0:
            break
        available = _available(lot, reserved)
        if available <= 0:
            continue
        take = min(available, remaining)
        allocations.append(Allocation(lot_id=lot.id, quantity=take))
        remaining -= take
    return allocations


def allocate(
    site_id: int,
    product_id: int,
    required_quantity: int,
    explicit_picks=None,
    reserved: dict[int, int] | None = None,
) -> list[Allocation]:
    """
    Return the lot picks for one sale line. The picks always add up exactly
    to required_quantity.

    With explicit_picks the caller chose the lots; otherwise lots are consumed
    oldest ingress first, ties broken by lot id.

    Raises:
        AllocationMismatchError: explicit picks are invalid or do not add up
        InsufficientStockError: FIFO cannot cover the quantity
    """
    required_quantity = require_positive_int(required_quantity, "quantity")
    reserved = reserved if reserved is not None else {}

    if explicit_picks:
        allocations = _allocate_explicit(site_id, product_id, required_quantity, explicit_picks, reserved)
    else:
        allocations = _allocate_fifo(site_id, product_id, required_quantity, reserved)

    for allocation in allocations:
        reserved[allocation.lot_id] = reserved.get(allocation.lot_id, 0) + allocation.quantity
    return allocations
