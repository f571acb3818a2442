# Overview: Pytest coverage for checkout; all-or-nothing stock decrement and ledger append.

import pytest

from posledger.models import LedgerRecord, StockMovement, Product
from posledger.services import checkout_service
from posledger.services.errors import InsufficientStock, InvalidQuantity, UnknownProduct
from posledger.services.ledger_service import parse_ref_id
from posledger.services.stock_service import stock_drift


class TestCheckout:
    def test_decrements_stock_and_writes_records(self, db_session, make_product, sell):
        a = make_product(name="A", stock=5)
        b = make_product(name="B", stock=20, price_cents=250)

        result = sell({a.id: 3, b.id: 2})

        assert parse_ref_id(result.transaction_no).kind == "checkout"
        assert result.total_cents == 3 * 1000 + 2 * 250
        assert db_session.get(Product, a.id).stock_on_hand == 2
        assert db_session.get(Product, b.id).stock_on_hand == 18

        records = db_session.query(LedgerRecord).filter_by(ref_id=result.transaction_no).all()
        assert sorted((r.product_id, r.quantity) for r in records) == sorted([(a.id, 3), (b.id, 2)])
        assert all(r.total_amount_cents == r.quantity * r.unit_price_cents for r in records)

        sales = db_session.query(StockMovement).filter_by(type="sale").all()
        assert len(sales) == 2
        assert stock_drift() == []

    def test_duplicate_lines_are_summed(self, db_session, make_product):
        a = make_product(stock=5)
        result = checkout_service.checkout([
            {"product_id": a.id, "quantity": 2},
            {"product_id": a.id, "quantity": 2},
        ])
        assert len(result.lines) == 1
        assert result.lines[0]["quantity"] == 4
        assert db_session.get(Product, a.id).stock_on_hand == 1

    def test_insufficient_stock_lists_every_product_and_changes_nothing(self, db_session, make_product, sell):
        a = make_product(name="A", stock=5)
        b = make_product(name="B", stock=1)
        c = make_product(name="C", stock=50)

        with pytest.raises(InsufficientStock) as exc:
            sell({a.id: 6, b.id: 2, c.id: 1})

        short = {item["product_id"]: item for item in exc.value.details["items"]}
        assert set(short) == {a.id, b.id}
        assert short[a.id]["requested_quantity"] == 6
        assert short[a.id]["on_hand"] == 5

        assert db_session.get(Product, a.id).stock_on_hand == 5
        assert db_session.get(Product, c.id).stock_on_hand == 50
        assert db_session.query(LedgerRecord).count() == 0

    def test_duplicate_lines_exceeding_stock_fail(self, db_session, make_product):
        a = make_product(stock=3)
        with pytest.raises(InsufficientStock):
            checkout_service.checkout([
                {"product_id": a.id, "quantity": 2},
                {"product_id": a.id, "quantity": 2},
            ])

    def test_exact_stock_goes_out_of_stock(self, db_session, make_product, sell, events):
        a = make_product(stock=3)
        result = sell({a.id: 3})
        assert result.summary == {"low_stock": [], "out_of_stock": [a.id]}
        assert db_session.get(Product, a.id).stock_on_hand == 0
        assert [e.crossed_threshold for e in events] == ["out_of_stock"]

    def test_summary_lists_only_new_crossings(self, db_session, make_product, sell):
        a = make_product(stock=15, threshold=10)
        first = sell({a.id: 5})
        assert first.summary["low_stock"] == [a.id]
        second = sell({a.id: 1})
        assert second.summary["low_stock"] == []

    @pytest.mark.parametrize("qty", [0, -1, 1.5, True, "2.0", "1e3"])
    def test_bad_quantities_rejected(self, db_session, make_product, qty):
        a = make_product(stock=5)
        with pytest.raises(InvalidQuantity):
            checkout_service.checkout([{"product_id": a.id, "quantity": qty}])
        assert db_session.get(Product, a.id).stock_on_hand == 5

    def test_empty_cart(self, db_session):
        with pytest.raises(InvalidQuantity):
            checkout_service.checkout([])

    def test_unknown_and_deleted_products(self, db_session, make_product, sell):
        from posledger.services import products_service

        a = make_product(stock=5)
        with pytest.raises(UnknownProduct):
            sell({a.id + 100: 1})
        products_service.soft_delete_product(a.id)
        with pytest.raises(UnknownProduct):
            sell({a.id: 1})

    def test_sink_failure_does_not_undo_sale(self, db_session, make_product, sell):
        from posledger.services import notification_service

        def broken(event):
            raise RuntimeError("mail server down")

        notification_service.register_sink(broken)
        a = make_product(stock=2)
        result = sell({a.id: 2})
        assert db_session.get(Product, a.id).stock_on_hand == 0
        assert db_session.query(LedgerRecord).filter_by(ref_id=result.transaction_no).count() == 1
