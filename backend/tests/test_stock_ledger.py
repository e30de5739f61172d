# Overview: Pytest coverage for lot moves, production intake, receipts and the movement ledger.

from datetime import datetime

import pytest

from sawmill.errors import LedgerImmutableError, NotFoundError, ValidationError
from sawmill.extensions import db
from sawmill.models import InventoryMovement, Product, StockLocation, StockLot
from sawmill.models.stock import MOVEMENT_PRODUCTION_IN, MOVEMENT_RECEIPT_IN, MOVEMENT_TRANSFER
from sawmill.services import stock_ledger_service

from conftest import PRINCIPAL_ID


def _movements(lot_id):
    return db.session.query(InventoryMovement).filter_by(lot_id=lot_id).order_by(InventoryMovement.id).all()


def _lots(product):
    return db.session.query(StockLot).filter_by(product_id=product.id).order_by(StockLot.id).all()


class TestMoveLot:
    """Moving pieces between PRODUCTION, DRYING, WAREHOUSE and SHELF."""

    def test_partial_move_creates_lot_with_same_lineage(self, db_session, site, product, make_lot):
        source = make_lot(product, 100, StockLocation.PRODUCTION, origin_order_id=12)

        result = stock_ledger_service.move_lot(site.id, source.id, "DRYING", 30, PRINCIPAL_ID)

        assert result.affected_lot_id != source.id
        assert result.new_quantity_at_destination == 30
        new_lot = db.session.get(StockLot, result.affected_lot_id)
        assert new_lot.location == StockLocation.DRYING
        assert new_lot.ingress_at == source.ingress_at
        assert new_lot.origin_order_id == 12
        assert db.session.get(StockLot, source.id).pieces == 70

    def test_full_move_without_compatible_lot_relocates_in_place(self, db_session, site, product, make_lot):
        source = make_lot(product, 40, StockLocation.DRYING)

        result = stock_ledger_service.move_lot(site.id, source.id, StockLocation.WAREHOUSE, 40, PRINCIPAL_ID)

        assert result.affected_lot_id == source.id
        assert result.new_quantity_at_destination == 40
        lot = db.session.get(StockLot, source.id)
        assert lot.location == StockLocation.WAREHOUSE
        assert len(_lots(product)) == 1

    def test_move_merges_into_compatible_lot(self, db_session, site, product, make_lot):
        source = make_lot(product, 50, StockLocation.DRYING, origin_order_id=3)
        target = make_lot(product, 20, StockLocation.WAREHOUSE, origin_order_id=3)

        result = stock_ledger_service.move_lot(site.id, source.id, "WAREHOUSE", 15, PRINCIPAL_ID)

        assert result.affected_lot_id == target.id
        assert result.new_quantity_at_destination == 35
        assert db.session.get(StockLot, source.id).pieces == 35
        assert len(_lots(product)) == 2

    def test_full_move_into_compatible_lot_closes_source_at_zero(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.DRYING)
        target = make_lot(product, 5, StockLocation.SHELF)

        result = stock_ledger_service.move_lot(site.id, source.id, "SHELF", 10, PRINCIPAL_ID)

        assert result.affected_lot_id == target.id
        assert result.new_quantity_at_destination == 15
        closed = db.session.get(StockLot, source.id)
        assert closed.pieces == 0
        assert closed.location == StockLocation.DRYING

    def test_lots_with_different_order_are_not_merged(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.DRYING, origin_order_id=1)
        other = make_lot(product, 5, StockLocation.SHELF, origin_order_id=2)

        result = stock_ledger_service.move_lot(site.id, source.id, "SHELF", 4, PRINCIPAL_ID)

        assert result.affected_lot_id not in (source.id, other.id)
        assert db.session.get(StockLot, other.id).pieces == 5

    def test_move_appends_one_transfer_movement(self, db_session, site, product, make_lot):
        source = make_lot(product, 100, StockLocation.PRODUCTION)

        result = stock_ledger_service.move_lot(site.id, source.id, "DRYING", 30, PRINCIPAL_ID)

        movements = db.session.query(InventoryMovement).all()
        assert len(movements) == 1
        movement = movements[0]
        assert movement.kind == MOVEMENT_TRANSFER
        assert movement.pieces_delta == 30
        assert movement.lot_id == result.affected_lot_id
        assert movement.origin_location == StockLocation.PRODUCTION
        assert movement.destination_location == StockLocation.DRYING
        assert movement.principal_id == PRINCIPAL_ID
        # Written on the destination only; the source lot is named in the note
        assert movement.lot_id != source.id
        assert movement.note == f"Moved from lot {source.id}"

    def test_move_is_conservative(self, db_session, site, product, make_lot):
        source = make_lot(product, 100, StockLocation.PRODUCTION)
        make_lot(product, 7, StockLocation.DRYING)

        stock_ledger_service.move_lot(site.id, source.id, "DRYING", 60, PRINCIPAL_ID)
        stock_ledger_service.move_lot(site.id, source.id, "SHELF", 40, PRINCIPAL_ID)

        assert sum(lot.pieces for lot in _lots(product)) == 107

    @pytest.mark.parametrize("quantity", [0, -3, "2.5", None, True])
    def test_rejects_bad_quantity(self, db_session, site, product, make_lot, quantity):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        with pytest.raises(ValidationError):
            stock_ledger_service.move_lot(site.id, source.id, "DRYING", quantity, PRINCIPAL_ID)
        assert db.session.query(InventoryMovement).count() == 0

    def test_rejects_unknown_destination(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        with pytest.raises(ValidationError):
            stock_ledger_service.move_lot(site.id, source.id, "ROOF", 5, PRINCIPAL_ID)

    def test_rejects_same_location(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        with pytest.raises(ValidationError):
            stock_ledger_service.move_lot(site.id, source.id, "PRODUCTION", 5, PRINCIPAL_ID)

    def test_rejects_more_than_available(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        with pytest.raises(ValidationError):
            stock_ledger_service.move_lot(site.id, source.id, "DRYING", 11, PRINCIPAL_ID)
        assert db.session.get(StockLot, source.id).pieces == 10
        assert len(_lots(product)) == 1

    def test_lot_of_another_site_is_not_found(self, db_session, site, other_site, product, make_lot):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        with pytest.raises(NotFoundError):
            stock_ledger_service.move_lot(other_site.id, source.id, "DRYING", 5, PRINCIPAL_ID)

    def test_missing_lot_is_not_found(self, db_session, site):
        with pytest.raises(NotFoundError):
            stock_ledger_service.move_lot(site.id, 999999, "DRYING", 5, PRINCIPAL_ID)


class TestProductionAndReceipts:

    def test_register_production_creates_lot_per_item(self, db_session, site, product, second_product):
        lots = stock_ledger_service.register_production(
            site.id,
            PRINCIPAL_ID,
            "2025-11-17",
            [
                {"product_id": product.id, "pieces": 50},
                {"product_id": second_product.id, "pieces": 100, "location": "DRYING"},
            ],
            origin_order_id=9,
        )

        assert len(lots) == 2
        assert lots[0].location == StockLocation.PRODUCTION
        assert lots[1].location == StockLocation.DRYING
        # Date-only input is pinned to noon UTC
        assert lots[0].ingress_at == datetime(2025, 11, 17, 12, 0, 0)
        assert all(lot.origin_order_id == 9 for lot in lots)

        movements = db.session.query(InventoryMovement).order_by(InventoryMovement.id).all()
        assert [m.kind for m in movements] == [MOVEMENT_PRODUCTION_IN, MOVEMENT_PRODUCTION_IN]
        assert [m.pieces_delta for m in movements] == [50, 100]
        assert all(m.origin_location is None for m in movements)

    def test_register_production_rejects_foreign_product(self, db_session, site, other_site):
        foreign = Product(site_id=other_site.id, sku="X", name="Foreign")
        db.session.add(foreign)
        db.session.commit()

        with pytest.raises(NotFoundError):
            stock_ledger_service.register_production(
                site.id, PRINCIPAL_ID, "2025-11-17", [{"product_id": foreign.id, "pieces": 5}]
            )
        assert db.session.query(StockLot).count() == 0

    def test_register_production_requires_items(self, db_session, site):
        with pytest.raises(ValidationError):
            stock_ledger_service.register_production(site.id, PRINCIPAL_ID, "2025-11-17", [])

    def test_receipt_creates_lot_then_merges(self, db_session, site, product):
        first = stock_ledger_service.receive_commercial_goods(site.id, PRINCIPAL_ID, product.id, 40, "SHELF")
        second = stock_ledger_service.receive_commercial_goods(site.id, PRINCIPAL_ID, product.id, 10, "SHELF")

        assert first.id == second.id
        assert db.session.get(StockLot, first.id).pieces == 50
        movements = _movements(first.id)
        assert [m.kind for m in movements] == [MOVEMENT_RECEIPT_IN, MOVEMENT_RECEIPT_IN]

    def test_receipt_does_not_merge_into_produced_lot(self, db_session, site, product, make_lot):
        produced = make_lot(product, 10, StockLocation.WAREHOUSE, origin_order_id=4)

        lot = stock_ledger_service.receive_commercial_goods(site.id, PRINCIPAL_ID, product.id, 5)

        assert lot.id != produced.id
        assert db.session.get(StockLot, produced.id).pieces == 10


class TestQueriesAndLedger:

    def test_availability_is_fifo_and_skips_empty_lots(self, db_session, site, product, make_lot):
        newer = make_lot(product, 5, StockLocation.SHELF, ingress_days_ago=1)
        older = make_lot(product, 8, StockLocation.WAREHOUSE, ingress_days_ago=5)
        make_lot(product, 0, StockLocation.DRYING, ingress_days_ago=9)

        lots = stock_ledger_service.list_available_lots(site.id, product.id)

        assert [lot.id for lot in lots] == [older.id, newer.id]

    def test_board_filters_by_location(self, db_session, site, product, make_lot):
        make_lot(product, 5, StockLocation.SHELF)
        drying = make_lot(product, 8, StockLocation.DRYING)

        lots = stock_ledger_service.list_lots(site.id, location="drying")

        assert [lot.id for lot in lots] == [drying.id]

    def test_movement_rows_cannot_be_updated(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        stock_ledger_service.move_lot(site.id, source.id, "DRYING", 4, PRINCIPAL_ID)
        movement = db.session.query(InventoryMovement).first()

        movement.pieces_delta = 400
        with pytest.raises(LedgerImmutableError):
            db.session.flush()
        db.session.rollback()

    def test_movement_rows_cannot_be_deleted(self, db_session, site, product, make_lot):
        source = make_lot(product, 10, StockLocation.PRODUCTION)
        stock_ledger_service.move_lot(site.id, source.id, "DRYING", 4, PRINCIPAL_ID)
        movement = db.session.query(InventoryMovement).first()

        db.session.delete(movement)
        with pytest.raises(LedgerImmutableError):
            db.session.flush()
        db.session.rollback()
