# Overview: Pytest coverage for the Flask CLI groups.

from sawmill.extensions import db
from sawmill.models import Product, Site, StockLot
from sawmill.models.cash import OUTBOX_POSTED, CashPostingOutbox


class TestSystemCommands:

    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "seed-demo", "--name", "Aserradero Demo"])
        second = runner.invoke(args=["system", "seed-demo", "--name", "Aserradero Demo"])

        assert first.exit_code == 0, first.output
        assert "PASS Demo lots registered" in first.output
        assert "SKIP" in second.output
        site = db.session.query(Site).filter_by(name="Aserradero Demo").one()
        assert db.session.query(Product).filter_by(site_id=site.id).count() == 3
        assert sum(lot.pieces for lot in db.session.query(StockLot).filter_by(site_id=site.id)) == 120 + 40 + 80 + 60


class TestCashCommands:

    def test_shifts_table(self, app, db_session, site, open_shift):
        open_shift(12345)

        result = app.test_cli_runner().invoke(args=["cash", "shifts", "--site-id", str(site.id)])

        assert result.exit_code == 0, result.output
        assert "OPEN" in result.output
        assert "123.45" in result.output

    def test_reconcile_posts_pending(self, app, db_session, site, open_shift):
        shift = open_shift(0)
        entry = CashPostingOutbox(
            sale_id=901, site_id=site.id, shift_id=shift.id, amount_cents=2500, description="Sale NV-00901",
        )
        db.session.add(entry)
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["cash", "reconcile", "--site-id", str(site.id)])

        assert result.exit_code == 0, result.output
        assert "Posted: 1" in result.output
        db.session.expire_all()
        assert db.session.get(CashPostingOutbox, entry.id).status == OUTBOX_POSTED
