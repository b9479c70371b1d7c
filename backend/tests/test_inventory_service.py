# Overview: Pytest coverage for the stock adjuster and its history ledger.

"""
Stock Adjuster Tests

Covers:
1. Stock equals the initial value plus the sum of accepted change amounts
2. Negative results are rejected with nothing written
3. Every accepted mutation appends one history entry with matching before/after
4. A missing inventory row is treated as stock 0
5. Alerting failures never fail or roll back the stock change
"""

import pytest

from stockwatch.models import Alert, Inventory, InventoryHistory
from stockwatch.services import inventory_service
from stockwatch.services.inventory_service import (
    NegativeStockError,
    adjust_stock,
    get_inventory_history,
    set_stock,
)
from stockwatch.services.ledger_store import NotFoundError
from stockwatch.validation import ValidationError


def _stock(db_session, product_id="p1", location_id="main"):
    row = db_session.get(Inventory, (product_id, location_id))
    return row.current_stock if row is not None else None


class TestAdjustStock:
    def test_stock_is_initial_plus_sum_of_changes(self, db_session, make_product, clock):
        make_product(stock=50, min_threshold=1)
        changes = [-7, 12, 0, -30, 4]

        for amount in changes:
            clock.advance(seconds=1)
            adjust_stock(product_id="p1", change_amount=amount, reason="Test")

        assert _stock(db_session) == 50 + sum(changes)
        history = db_session.query(InventoryHistory).filter_by(product_id="p1").all()
        assert len(history) == len(changes)

    def test_result_reports_previous_and_current(self, db_session, make_product):
        make_product(stock=10, min_threshold=5)

        result = adjust_stock(product_id="p1", change_amount=-3, reason="Sale", user_id="cashier")

        assert result["previous_stock"] == 10
        assert result["current_stock"] == 7
        assert result["change_amount"] == -3
        assert result["location_id"] == "main"
        assert result["updated_at"].endswith("Z")

    def test_negative_result_rejected_without_writes(self, db_session, make_product):
        make_product(stock=10)

        with pytest.raises(NegativeStockError):
            adjust_stock(product_id="p1", change_amount=-11, reason="Sale")

        assert _stock(db_session) == 10
        assert db_session.query(InventoryHistory).count() == 0
        assert db_session.query(Alert).count() == 0

    def test_draining_to_exactly_zero_is_allowed(self, db_session, make_product):
        make_product(stock=10)

        result = adjust_stock(product_id="p1", change_amount=-10, reason="Sale")

        assert result["current_stock"] == 0
        assert _stock(db_session) == 0

    def test_missing_row_is_treated_as_zero(self, db_session, make_product):
        make_product(stock=None, min_threshold=3)

        result = adjust_stock(product_id="p1", change_amount=8, reason="Receiving", location_id="backroom")

        assert result["previous_stock"] == 0
        assert _stock(db_session, location_id="backroom") == 8

    def test_missing_row_negative_change_rejected(self, db_session, make_product):
        make_product(stock=None)

        with pytest.raises(NegativeStockError):
            adjust_stock(product_id="p1", change_amount=-1, reason="Sale")

        assert db_session.query(Inventory).count() == 0

    def test_unknown_product_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            adjust_stock(product_id="nope", change_amount=1, reason="Receiving")

    def test_zero_change_still_records_history(self, db_session, make_product):
        make_product(stock=10, min_threshold=5)

        result = adjust_stock(product_id="p1", change_amount=0, reason="Recount")

        assert result["previous_stock"] == result["current_stock"] == 10
        entry = db_session.query(InventoryHistory).one()
        assert entry.stock_before == entry.stock_after == 10
        assert entry.change_amount == 0

    @pytest.mark.parametrize("bad", ["1.5", 2.0, True, "", "1e3", None])
    def test_change_amount_must_be_integer(self, db_session, make_product, bad):
        make_product(stock=10)

        with pytest.raises(ValidationError):
            adjust_stock(product_id="p1", change_amount=bad, reason="Sale")

    def test_reason_is_required(self, db_session, make_product):
        make_product(stock=10)

        with pytest.raises(ValidationError):
            adjust_stock(product_id="p1", change_amount=1, reason="   ")

    def test_locations_are_independent(self, db_session, make_product):
        make_product(stock=10, min_threshold=1)

        adjust_stock(product_id="p1", change_amount=5, reason="Receiving", location_id="backroom")
        adjust_stock(product_id="p1", change_amount=-4, reason="Sale")

        assert _stock(db_session) == 6
        assert _stock(db_session, location_id="backroom") == 5


class TestHistory:
    def test_history_chain_matches_row_values(self, db_session, make_product, clock):
        make_product(stock=20, min_threshold=1)
        for amount in (-5, 3, -8):
            clock.advance(seconds=1)
            adjust_stock(product_id="p1", change_amount=amount, reason="Test", user_id="u1")

        entries = list(reversed(get_inventory_history("p1")))

        assert [e.stock_before for e in entries] == [20, 15, 18]
        assert [e.stock_after for e in entries] == [15, 18, 10]
        for entry in entries:
            assert entry.stock_after - entry.stock_before == entry.change_amount
            assert entry.user_id == "u1"

    def test_history_newest_first_and_limited(self, db_session, make_product, clock):
        make_product(stock=0, min_threshold=1)
        for amount in (1, 2, 3):
            clock.advance(seconds=1)
            adjust_stock(product_id="p1", change_amount=amount, reason="Receiving")

        entries = get_inventory_history("p1", limit=2)

        assert [e.change_amount for e in entries] == [3, 2]

    def test_history_defaults_user_to_system(self, db_session, make_product):
        make_product(stock=5)

        adjust_stock(product_id="p1", change_amount=1, reason="Receiving")

        assert db_session.query(InventoryHistory).one().user_id == "system"


class TestSetStock:
    def test_set_stock_records_equivalent_delta(self, db_session, make_product):
        make_product(stock=12, min_threshold=5)

        result = set_stock(product_id="p1", current_stock=4)

        assert result["previous_stock"] == 12
        assert result["current_stock"] == 4
        assert result["change_amount"] == -8
        entry = db_session.query(InventoryHistory).one()
        assert entry.reason == "Stock count"
        assert entry.change_amount == -8

    def test_set_stock_below_threshold_creates_alert(self, db_session, make_product):
        make_product(stock=12, min_threshold=5)

        result = set_stock(product_id="p1", current_stock=2, reason="Cycle count")

        assert result["alert"]["created"] is True
        assert db_session.query(Alert).filter_by(product_id="p1", status="NEW").count() == 1

    def test_set_stock_rejects_negative(self, db_session, make_product):
        make_product(stock=12)

        with pytest.raises(ValidationError):
            set_stock(product_id="p1", current_stock=-1)


class TestAlertingIsolation:
    def test_dispatch_failure_keeps_stock_change(self, db_session, make_product, monkeypatch):
        make_product(stock=10, min_threshold=5)

        def boom(**kwargs):
            raise RuntimeError("alert store unavailable")

        monkeypatch.setattr(inventory_service, "dispatch_alert_evaluation", boom)

        result = adjust_stock(product_id="p1", change_amount=-6, reason="Sale")

        assert result["current_stock"] == 4
        assert result["alert"] is None
        assert _stock(db_session) == 4
        assert db_session.query(InventoryHistory).count() == 1
        assert db_session.query(Alert).count() == 0
