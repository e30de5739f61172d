# Overview: Pytest coverage for sale and expense cancellation; stock returns, cash compensation, policies.

import pytest

from sawmill.errors import (
    CashReconciliationPendingError,
    ConflictError,
    NotFoundError,
    SiteAccessError,
    StorageUnavailableError,
    ValidationError,
)
from sawmill.extensions import db
from sawmill.models import (
    CashMovement,
    CashMovementKind,
    CashPostingOutbox,
    Expense,
    InventoryMovement,
    Sale,
    SaleLine,
    SaleLineAllocation,
    StockLocation,
    StockLot,
)
from sawmill.models.cash import OUTBOX_DISCARDED
from sawmill.models.stock import MOVEMENT_SALE_EXIT, MOVEMENT_SALE_RETURN
from sawmill.services import (
    cancellation_service,
    cash_shift_service,
    expense_service,
    sales_service,
    stock_ledger_service,
)

from conftest import PRINCIPAL_ID


def _sell(site, product, quantity, method="CASH", price_cents=2000):
    return sales_service.create_sale(
        site.id, PRINCIPAL_ID, 4, method,
        [{"product_id": product.id, "quantity": quantity, "unit_price_cents": price_cents}],
    )


class TestCancelSale:

    def test_delete_policy_restores_lots_and_cash(self, db_session, site, product, make_lot, open_shift):
        shift = open_shift(50000)
        lot_a = make_lot(product, 6, StockLocation.SHELF, ingress_days_ago=10)
        lot_b = make_lot(product, 8, StockLocation.WAREHOUSE, ingress_days_ago=5)
        sale = _sell(site, product, 10)
        sale_id = sale.id

        result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID, policy="DELETE")

        assert result["cancelled"] is True
        assert result["policy"] == "DELETE"
        assert result["cash_compensation"] == cancellation_service.CASH_POSTED
        assert len(result["returned_movements"]) == 2

        db.session.expire_all()
        assert db.session.get(StockLot, lot_a.id).pieces == 6
        assert db.session.get(StockLot, lot_b.id).pieces == 8
        assert cash_shift_service.theoretical_balance_cents(shift.id) == 50000

        assert db.session.get(Sale, sale_id) is None
        assert db.session.query(SaleLine).count() == 0
        assert db.session.query(SaleLineAllocation).count() == 0

    def test_returns_reverse_each_exit_into_its_lot_and_location(self, db_session, site, product, make_lot,
                                                                  open_shift):
        open_shift(0)
        lot_a = make_lot(product, 6, StockLocation.SHELF, ingress_days_ago=10)
        lot_b = make_lot(product, 8, StockLocation.WAREHOUSE, ingress_days_ago=5)
        sale_id = _sell(site, product, 10, method="CARD").id

        cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        exits = db.session.query(InventoryMovement).filter_by(kind=MOVEMENT_SALE_EXIT).order_by(
            InventoryMovement.id).all()
        returns = db.session.query(InventoryMovement).filter_by(kind=MOVEMENT_SALE_RETURN).order_by(
            InventoryMovement.id).all()

        assert [r.reversal_of_id for r in returns] == [e.id for e in exits]
        assert [(r.lot_id, r.pieces_delta) for r in returns] == [(lot_a.id, 6), (lot_b.id, 4)]
        assert [r.destination_location for r in returns] == [StockLocation.SHELF, StockLocation.WAREHOUSE]
        assert all(r.sale_id == sale_id for r in returns)
        # The ledger keeps the original exits untouched
        assert [e.pieces_delta for e in exits] == [-6, -4]

    def test_return_follows_original_location_after_lot_moved(self, db_session, site, product, make_lot):
        lot = make_lot(product, 10, StockLocation.WAREHOUSE)
        sale_id = _sell(site, product, 4, method="CARD").id
        stock_ledger_service.move_lot(site.id, lot.id, "SHELF", 6, PRINCIPAL_ID)

        cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        db.session.expire_all()
        moved = db.session.get(StockLot, lot.id)
        assert (moved.location, moved.pieces) == (StockLocation.SHELF, 6)
        back = db.session.query(StockLot).filter_by(location=StockLocation.WAREHOUSE).one()
        assert back.id != lot.id
        assert back.pieces == 4
        assert (back.ingress_at, back.origin_order_id) == (moved.ingress_at, moved.origin_order_id)
        ret = db.session.query(InventoryMovement).filter_by(kind=MOVEMENT_SALE_RETURN).one()
        assert ret.lot_id == back.id
        assert ret.destination_location == StockLocation.WAREHOUSE
        assert ret.note == f"Returned for lot {lot.id}"

    def test_return_merges_into_compatible_lot_at_original_location(self, db_session, site, product, make_lot):
        lot = make_lot(product, 10, StockLocation.WAREHOUSE)
        sale_id = _sell(site, product, 4, method="CARD").id
        stock_ledger_service.move_lot(site.id, lot.id, "SHELF", 6, PRINCIPAL_ID)
        split = stock_ledger_service.move_lot(site.id, lot.id, "WAREHOUSE", 2, PRINCIPAL_ID)

        cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        db.session.expire_all()
        assert db.session.get(StockLot, lot.id).pieces == 4
        assert db.session.get(StockLot, split.affected_lot_id).pieces == 6
        assert db.session.query(StockLot).count() == 2
        ret = db.session.query(InventoryMovement).filter_by(kind=MOVEMENT_SALE_RETURN).one()
        assert ret.lot_id == split.affected_lot_id

    def test_flag_policy_keeps_sale_marked_cancelled(self, db_session, site, product, make_lot, open_shift):
        open_shift(1000)
        make_lot(product, 10)
        sale_id = _sell(site, product, 2).id

        result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID, reason="Wrong client", policy="flag")

        assert result["policy"] == "FLAG"
        sale = db.session.get(Sale, sale_id)
        assert sale.status == "CANCELLED"
        assert sale.cancel_reason == "Wrong client"
        assert sale.cancelled_by_principal_id == PRINCIPAL_ID
        assert sale.cancelled_at is not None

    def test_flagged_sale_cannot_be_cancelled_twice(self, db_session, site, product, make_lot, open_shift):
        shift = open_shift(1000)
        lot = make_lot(product, 10)
        sale_id = _sell(site, product, 2).id
        cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID, policy="FLAG")

        with pytest.raises(ConflictError):
            cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID, policy="FLAG")

        assert db.session.get(StockLot, lot.id).pieces == 10
        assert cash_shift_service.theoretical_balance_cents(shift.id) == 1000

    def test_deleted_sale_is_not_found_afterwards(self, db_session, site, product, make_lot, open_shift):
        open_shift(0)
        make_lot(product, 10)
        sale_id = _sell(site, product, 2).id
        cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID, policy="DELETE")

        with pytest.raises(NotFoundError):
            cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID, policy="DELETE")

    def test_default_policy_comes_from_config(self, app, db_session, site, product, make_lot):
        app.config["CANCELLATION_POLICY"] = "FLAG"
        make_lot(product, 10)
        sale_id = _sell(site, product, 2, method="TRANSFER").id

        result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        assert result["policy"] == "FLAG"
        assert result["cash_compensation"] == cancellation_service.CASH_NOT_APPLICABLE

    def test_unknown_policy(self, db_session, site):
        with pytest.raises(ValidationError):
            cancellation_service.cancel_sale(site.id, 1, PRINCIPAL_ID, policy="SHRED")

    def test_sale_of_other_site_is_forbidden(self, db_session, site, other_site, product, make_lot):
        lot = make_lot(product, 10)
        sale_id = _sell(site, product, 2, method="CARD").id

        with pytest.raises(SiteAccessError):
            cancellation_service.cancel_sale(other_site.id, sale_id, PRINCIPAL_ID)

        assert db.session.get(StockLot, lot.id).pieces == 8
        assert db.session.get(Sale, sale_id) is not None

    def test_credit_sale_has_no_cash_to_compensate(self, db_session, site, product, make_lot, open_shift):
        shift = open_shift(1000)
        make_lot(product, 10)
        sale_id = _sell(site, product, 2, method="CREDIT").id

        result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        assert result["cash_compensation"] == cancellation_service.CASH_NOT_APPLICABLE
        assert cash_shift_service.theoretical_balance_cents(shift.id) == 1000


class TestCancelSaleCash:

    def test_outflow_goes_to_the_currently_open_shift(self, db_session, site, product, make_lot, open_shift):
        first = open_shift(10000)
        make_lot(product, 10)
        sale_id = _sell(site, product, 1, price_cents=3000).id
        cash_shift_service.close_shift(site.id, first.id, 13000, PRINCIPAL_ID)
        second = open_shift(5000)

        result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        assert result["cash_compensation"] == cancellation_service.CASH_POSTED
        assert cash_shift_service.theoretical_balance_cents(second.id) == 2000
        outflow = db.session.query(CashMovement).filter_by(kind=CashMovementKind.SALE_CANCELLATION_OUTFLOW).one()
        assert outflow.shift_id == second.id
        assert outflow.sale_id == sale_id

    def test_no_open_shift_skips_cash_but_cancels(self, db_session, site, product, make_lot, open_shift, caplog):
        shift = open_shift(0)
        lot = make_lot(product, 10)
        sale_id = _sell(site, product, 3).id
        cash_shift_service.close_shift(site.id, shift.id, 6000, PRINCIPAL_ID)

        with caplog.at_level("WARNING", logger="sawmill.services.cancellation_service"):
            result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        assert result["cash_compensation"] == cancellation_service.CASH_SKIPPED_NO_OPEN_SHIFT
        assert "no open shift" in caplog.text
        assert db.session.get(StockLot, lot.id).pieces == 10
        assert db.session.query(CashMovement).filter_by(
            kind=CashMovementKind.SALE_CANCELLATION_OUTFLOW).count() == 0

    def test_pending_outbox_entry_is_discarded(self, app, db_session, site, product, make_lot, open_shift,
                                               monkeypatch):
        app.config["CASH_POSTING_MODE"] = "DEFERRED"
        shift = open_shift(1000)
        make_lot(product, 10)

        def storage_down(*args, **kwargs):
            raise StorageUnavailableError("Storage temporarily unavailable")

        monkeypatch.setattr(sales_service, "append_cash_movement", storage_down)
        with pytest.raises(CashReconciliationPendingError) as excinfo:
            _sell(site, product, 1)
        monkeypatch.undo()
        sale_id = excinfo.value.sale["sale_id"]

        result = cancellation_service.cancel_sale(site.id, sale_id, PRINCIPAL_ID)

        assert result["cash_compensation"] == cancellation_service.CASH_DISCARDED_PENDING
        entry = db.session.query(CashPostingOutbox).filter_by(sale_id=sale_id).one()
        assert entry.status == OUTBOX_DISCARDED
        # Neither the income nor an outflow reached the drawer
        assert cash_shift_service.theoretical_balance_cents(shift.id) == 1000
        assert sales_service.reconcile_pending_cash_postings(site.id) == {"posted": [], "failed": []}


class TestCancelExpense:

    def test_paid_cash_expense_returns_money_to_drawer(self, db_session, site, open_shift):
        shift = open_shift(10000)
        expense = expense_service.create_expense(site.id, PRINCIPAL_ID, "Juan Perez", 2500, "PAYROLL")
        expense_id = expense.id

        result = cancellation_service.cancel_expense(site.id, expense_id, PRINCIPAL_ID, policy="DELETE")

        assert result["cash_compensation"] == cancellation_service.CASH_POSTED
        assert cash_shift_service.theoretical_balance_cents(shift.id) == 10000
        assert db.session.get(Expense, expense_id) is None
        income = db.session.query(CashMovement).filter_by(kind=CashMovementKind.EXPENSE_CANCELLATION_INCOME).one()
        assert income.expense_id == expense_id

    def test_pending_freight_has_nothing_to_return(self, db_session, site, open_shift):
        shift = open_shift(10000)
        expense = expense_service.create_expense(site.id, PRINCIPAL_ID, "Fletes del Norte", 4000, "freight")

        result = cancellation_service.cancel_expense(site.id, expense.id, PRINCIPAL_ID, policy="FLAG")

        assert result["cash_compensation"] == cancellation_service.CASH_NOT_APPLICABLE
        assert db.session.get(Expense, expense.id).status == "CANCELLED"
        assert cash_shift_service.theoretical_balance_cents(shift.id) == 10000

    def test_flagged_expense_cannot_be_cancelled_twice(self, db_session, site, open_shift):
        open_shift(10000)
        expense = expense_service.create_expense(site.id, PRINCIPAL_ID, "Ferreteria", 900, "SUPPLIES")
        cancellation_service.cancel_expense(site.id, expense.id, PRINCIPAL_ID, policy="FLAG")

        with pytest.raises(ConflictError):
            cancellation_service.cancel_expense(site.id, expense.id, PRINCIPAL_ID, policy="FLAG")

    def test_expense_of_other_site_is_forbidden(self, db_session, site, other_site, open_shift):
        open_shift(10000)
        expense = expense_service.create_expense(site.id, PRINCIPAL_ID, "Ferreteria", 900, "SUPPLIES")

        with pytest.raises(SiteAccessError):
            cancellation_service.cancel_expense(other_site.id, expense.id, PRINCIPAL_ID)

    def test_missing_expense(self, db_session, site):
        with pytest.raises(NotFoundError):
            cancellation_service.cancel_expense(site.id, 31337, PRINCIPAL_ID)
