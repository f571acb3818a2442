# Overview: Pytest coverage for ledger reference ids and append-only writes.

from datetime import datetime

import pytest

from posledger.models import LedgerTransaction
from posledger.services.ledger_service import (
    RefId,
    allocate_ts,
    make_ref_id,
    parse_ref_id,
    ref_suffix,
    open_transaction,
    append_record,
)
from posledger.time_utils import to_epoch_ms, from_epoch_ms


class TestRefIds:
    def test_make_and_parse(self):
        ref = make_ref_id("checkout", 1718000000000)
        assert ref == "checkout-1718000000000"
        assert parse_ref_id(ref) == RefId(kind="checkout", ts="1718000000000")
        assert str(parse_ref_id(ref)) == ref

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            make_ref_id("refund", 1)

    @pytest.mark.parametrize("value", [None, "", "checkout", "checkout-", "sale-123", "123"])
    def test_parse_rejects_malformed(self, value):
        assert parse_ref_id(value) is None

    def test_suffix_shared_by_checkout_and_void(self):
        assert ref_suffix("checkout-42") == ref_suffix("void-42") == "42"

    def test_epoch_ms_round_trip(self):
        dt = datetime(2026, 3, 1, 12, 30, 15, 123000)
        assert from_epoch_ms(to_epoch_ms(dt)) == dt


class TestAllocateTs:
    def test_bumps_until_unused(self, db_session):
        at = datetime(2026, 3, 1, 12, 0, 0)
        first = allocate_ts("checkout", at)
        open_transaction(kind="checkout", ts=first, created_at=at)
        second = allocate_ts("checkout", at)
        assert second == first + 1

    def test_kinds_do_not_collide(self, db_session):
        at = datetime(2026, 3, 1, 12, 0, 0)
        ts = allocate_ts("checkout", at)
        open_transaction(kind="checkout", ts=ts, created_at=at)
        assert allocate_ts("return", at) == ts


class TestAppendRecord:
    def test_sign_rules(self, db_session, make_product):
        product = make_product()
        at = datetime(2026, 3, 1, 12, 0, 0)
        header = open_transaction(kind="checkout", ts=to_epoch_ms(at), created_at=at)
        with pytest.raises(ValueError):
            append_record(header=header, product_id=product.id, quantity=-1, unit_price_cents=1000, product=product)
        with pytest.raises(ValueError):
            append_record(header=header, product_id=product.id, quantity=0, unit_price_cents=1000, product=product)

        void = open_transaction(kind="void", ts=to_epoch_ms(at), created_at=at)
        with pytest.raises(ValueError):
            append_record(header=void, product_id=product.id, quantity=1, unit_price_cents=1000, product=product)

    def test_snapshots_product(self, db_session, make_product):
        product = make_product(name="Cola", barcode="4801", unit_cost_cents=90, price_cents=150)
        at = datetime(2026, 3, 1, 12, 0, 0)
        header = open_transaction(kind="checkout", ts=to_epoch_ms(at), created_at=at)
        record = append_record(
            header=header, product_id=product.id, quantity=2, unit_price_cents=150, product=product
        )
        assert record.ref_id == header.ref_id
        assert record.product_name == "Cola"
        assert record.product_barcode == "4801"
        assert record.unit_cost_cents == 90
        assert record.total_amount_cents == 300
        assert db_session.query(LedgerTransaction).count() == 1
