# Overview: Pytest coverage for voids; restore stock exactly once.

import pytest

from posledger.models import LedgerRecord, LedgerTransaction, Product
from posledger.services import void_service, return_service
from posledger.services.errors import (
    AlreadyVoided,
    CompensationConflict,
    InvalidQuantity,
    UnknownTransaction,
)
from posledger.services.ledger_service import ref_suffix
from posledger.services.stock_service import stock_drift


class TestVoid:
    def test_void_restores_stock_and_mirrors_records(self, db_session, make_product, sell):
        a = make_product(stock=5)
        b = make_product(name="B", stock=5, price_cents=300)
        sale = sell({a.id: 2, b.id: 1})

        result = void_service.void_transaction(sale.transaction_no, user_id=3, reason="wrong item")

        assert result.voided_transaction_no == sale.transaction_no
        assert ref_suffix(result.transaction_no) == ref_suffix(sale.transaction_no)
        assert result.amount_cents == 2 * 1000 + 300
        assert db_session.get(Product, a.id).stock_on_hand == 5
        assert db_session.get(Product, b.id).stock_on_hand == 5

        void_records = db_session.query(LedgerRecord).filter_by(ref_id=result.transaction_no).all()
        assert sorted((r.product_id, r.quantity, r.total_amount_cents) for r in void_records) == sorted([
            (a.id, -2, -2000),
            (b.id, -1, -300),
        ])

        header = db_session.query(LedgerTransaction).filter_by(ref_id=result.transaction_no).one()
        checkout = db_session.query(LedgerTransaction).filter_by(ref_id=sale.transaction_no).one()
        assert header.voids_transaction_id == checkout.id
        assert stock_drift() == []

    def test_second_void_rejected_without_double_restore(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 2})
        void_service.void_transaction(sale.transaction_no)

        with pytest.raises(AlreadyVoided):
            void_service.void_transaction(sale.transaction_no)
        assert db_session.get(Product, a.id).stock_on_hand == 5

    @pytest.mark.parametrize("transaction_no", ["checkout-1", "void-1", "return-5", "garbage"])
    def test_unknown_transaction(self, db_session, transaction_no):
        with pytest.raises(UnknownTransaction):
            void_service.void_transaction(transaction_no)

    def test_void_after_return_is_a_conflict(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 3})
        return_service.return_item(sale.lines[0]["id"], 1)

        with pytest.raises(CompensationConflict):
            void_service.void_transaction(sale.transaction_no)
        assert db_session.get(Product, a.id).stock_on_hand == 3

    def test_lines_must_match_original(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 3})

        with pytest.raises(InvalidQuantity):
            void_service.void_transaction(sale.transaction_no, [{"product_id": a.id, "quantity": 1}])

        result = void_service.void_transaction(sale.transaction_no, [{"product_id": a.id, "quantity": 3}])
        assert result.amount_cents == 3000

    def test_void_of_deleted_product_still_restores(self, db_session, make_product, sell):
        from posledger.services import products_service

        a = make_product(stock=5)
        sale = sell({a.id: 2})
        products_service.soft_delete_product(a.id)

        void_service.void_transaction(sale.transaction_no)
        assert db_session.get(Product, a.id).stock_on_hand == 5

    def test_approval_hook(self, app, db_session):
        assert void_service.approval_required(None) is False
        app.config["VOID_REQUIRES_APPROVAL"] = True
        try:
            assert void_service.approval_required(None) is True
            assert void_service.approval_required(3) is False
        finally:
            app.config["VOID_REQUIRES_APPROVAL"] = False


class TestVoidLocking:
    def test_checkout_header_locked_before_checks(self, make_product, sell, lock_trace):
        a = make_product(stock=5)
        sale = sell({a.id: 2})
        lock_trace.clear()

        void_service.void_transaction(sale.transaction_no)

        assert lock_trace == ["LedgerTransaction", "check", "Product"]
