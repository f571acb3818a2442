# Overview: Pytest coverage for returns; refunds bounded by what was sold.

import pytest

from posledger.models import LedgerRecord, Product
from posledger.services import return_service, void_service
from posledger.services.errors import (
    AlreadyFullyReturned,
    AlreadyVoided,
    InvalidQuantity,
    UnknownTransaction,
)
from posledger.services.ledger_service import parse_ref_id, returned_quantity
from posledger.services.stock_service import stock_drift
from posledger.validation import ReturnItem


class TestReturns:
    def test_partial_return_refunds_original_price(self, db_session, make_product, sell):
        a = make_product(stock=5, price_cents=1000)
        sale = sell({a.id: 3})
        sale_line_id = sale.lines[0]["id"]

        # A later price change must not affect the refund
        from posledger.services import products_service
        products_service.update_product(product_id=a.id, patch={"price_cents": 5000})

        result = return_service.return_item(sale_line_id, 1, "damaged")

        assert result.refund_cents == 1000
        assert parse_ref_id(result.transaction_no).kind == "return"
        assert db_session.get(Product, a.id).stock_on_hand == 3

        record = db_session.query(LedgerRecord).filter_by(ref_id=result.transaction_no).one()
        assert record.quantity == -1
        assert record.total_amount_cents == -1000
        assert record.original_record_id == sale_line_id
        assert record.unit_cost_cents == 600
        assert stock_drift() == []

    def test_return_bound(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 3})
        line = sale.lines[0]["id"]

        return_service.return_item(line, 2)
        with pytest.raises(InvalidQuantity):
            return_service.return_item(line, 2)
        return_service.return_item(line, 1)
        with pytest.raises(AlreadyFullyReturned):
            return_service.return_item(line, 1)

        assert returned_quantity(line) == 3
        assert db_session.get(Product, a.id).stock_on_hand == 5

    def test_batch_entries_for_one_line_count_together(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 3})
        line = sale.lines[0]["id"]

        with pytest.raises(InvalidQuantity):
            return_service.return_items([ReturnItem(line, 2), ReturnItem(line, 2)])
        assert returned_quantity(line) == 0

    def test_batch_shares_one_reference(self, db_session, make_product, sell):
        a = make_product(stock=5)
        b = make_product(name="B", stock=5, price_cents=200)
        sale = sell({a.id: 2, b.id: 2})
        lines = {l["product_id"]: l["id"] for l in sale.lines}

        result = return_service.return_items([ReturnItem(lines[a.id], 1), ReturnItem(lines[b.id], 2)])
        assert result.refund_cents == 1000 + 400
        assert {l["ref_id"] for l in result.lines} == {result.transaction_no}

    def test_zero_quantity_rejected(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 1})
        with pytest.raises(InvalidQuantity):
            return_service.return_item(sale.lines[0]["id"], 0)

    def test_return_against_voided_sale_rejected(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 2})
        void_service.void_transaction(sale.transaction_no)

        with pytest.raises(AlreadyVoided):
            return_service.return_item(sale.lines[0]["id"], 1)
        assert db_session.get(Product, a.id).stock_on_hand == 5

    def test_unknown_or_non_sale_line(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 2})
        returned = return_service.return_item(sale.lines[0]["id"], 1)

        with pytest.raises(UnknownTransaction):
            return_service.return_item(99999, 1)
        with pytest.raises(UnknownTransaction):
            return_service.return_item(returned.lines[0]["id"], 1)


class TestReturnLocking:
    def test_checkout_headers_locked_before_checks(self, make_product, sell, lock_trace):
        a = make_product(stock=5)
        b = make_product(name="B", stock=5)
        first = sell({a.id: 2})
        second = sell({b.id: 2})
        lock_trace.clear()

        return_service.return_items([
            ReturnItem(sale_line_id=first.lines[0]["id"], quantity=1),
            ReturnItem(sale_line_id=second.lines[0]["id"], quantity=1),
        ])

        # One lock statement covers both headers; every check runs under it
        assert lock_trace == ["LedgerTransaction", "check", "check", "Product"]
