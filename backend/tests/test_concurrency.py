# Overview: Pytest coverage for the unit-of-work boundary; atomicity, timeouts and storage error mapping.

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from sawmill.errors import (
    ConcurrentUpdateError,
    InsufficientStockError,
    StorageUnavailableError,
    UnitOfWorkTimeoutError,
)
from sawmill.extensions import db
from sawmill.models import CashShift, InventoryMovement, Sale, Site, StockLocation, StockLot
from sawmill.services import cash_shift_service, sales_service, stock_ledger_service
from sawmill.services.concurrency import unit_of_work

from conftest import PRINCIPAL_ID


class TestUnitOfWork:

    def test_commits_on_success(self, db_session):
        with unit_of_work("create site"):
            db.session.add(Site(name="Aserradero C", code="C"))

        db.session.expire_all()
        assert db.session.query(Site).filter_by(code="C").count() == 1

    def test_nested_unit_joins_outer(self, db_session):
        with pytest.raises(InsufficientStockError):
            with unit_of_work("outer"):
                with unit_of_work("inner"):
                    db.session.add(Site(name="Aserradero D", code="D"))
                raise InsufficientStockError("gone")

        assert db.session.query(Site).filter_by(code="D").count() == 0

    def test_storage_failure_is_mapped_and_rolled_back(self, db_session):
        with pytest.raises(StorageUnavailableError) as excinfo:
            with unit_of_work("create site"):
                db.session.add(Site(name="Aserradero E", code="E"))
                db.session.flush()
                raise OperationalError("INSERT", {}, Exception("database is locked"))

        assert excinfo.value.status_code == 503
        assert db.session.query(Site).filter_by(code="E").count() == 0

    def test_stale_row_is_a_retryable_conflict(self, db_session, site, product, make_lot):
        lot = make_lot(product, 10)
        assert lot.version_id == 1
        table = StockLot.__table__

        with pytest.raises(ConcurrentUpdateError) as excinfo:
            with unit_of_work("edit lot"):
                # Somebody else bumped the row after we read it
                db.session.execute(
                    table.update().where(table.c.id == lot.id).values(version_id=table.c.version_id + 1)
                )
                lot.pieces = 3

        assert excinfo.value.retryable is True
        assert isinstance(excinfo.value.__cause__, StaleDataError)
        db.session.expire_all()
        assert db.session.get(StockLot, lot.id).pieces == 10

    def test_other_exceptions_propagate_after_rollback(self, db_session):
        with pytest.raises(KeyError):
            with unit_of_work("create site"):
                db.session.add(Site(name="Aserradero F", code="F"))
                raise KeyError("boom")

        assert db.session.query(Site).filter_by(code="F").count() == 0


class TestTimeouts:
    """A unit that outlives UNIT_OF_WORK_TIMEOUT_MS is rolled back whole."""

    @pytest.fixture(autouse=True)
    def zero_timeout(self, app):
        app.config["UNIT_OF_WORK_TIMEOUT_MS"] = 0

    def test_open_shift_times_out(self, db_session, site):
        with pytest.raises(UnitOfWorkTimeoutError) as excinfo:
            cash_shift_service.open_shift(site.id, 1000, PRINCIPAL_ID)

        assert isinstance(excinfo.value, StorageUnavailableError)
        assert db.session.query(CashShift).count() == 0

    def test_move_times_out_without_partial_writes(self, db_session, site, product, make_lot):
        lot = make_lot(product, 10, StockLocation.PRODUCTION)

        with pytest.raises(UnitOfWorkTimeoutError):
            stock_ledger_service.move_lot(site.id, lot.id, "DRYING", 4, PRINCIPAL_ID)

        db.session.expire_all()
        assert db.session.get(StockLot, lot.id).pieces == 10
        assert db.session.query(StockLot).count() == 1
        assert db.session.query(InventoryMovement).count() == 0

    def test_sale_times_out_without_partial_writes(self, db_session, site, product, make_lot):
        lot = make_lot(product, 10)

        with pytest.raises(UnitOfWorkTimeoutError):
            sales_service.create_sale(
                site.id, PRINCIPAL_ID, 4, "CARD",
                [{"product_id": product.id, "quantity": 2, "unit_price_cents": 100}],
            )

        db.session.expire_all()
        assert db.session.get(StockLot, lot.id).pieces == 10
        assert db.session.query(Sale).count() == 0
