# Overview: Pytest coverage for reconciliation; totals rebuilt from the ledger alone.

from datetime import datetime, timedelta

import pytest

from posledger.services import reporting_service, return_service, void_service, products_service
from posledger.services.ledger_service import open_transaction, append_record, find_transaction
from posledger.services.reporting_service import ReportError, growth_rate, trend_label

MON = datetime(2026, 3, 2, 10, 0, 0)
TUE = MON + timedelta(days=1)
WED = MON + timedelta(days=2)


@pytest.fixture
def worked_example(db_session, make_product, sell):
    """Stock 5 at $10 (cost $6); sell 3 on Monday, return 1 on Tuesday."""
    a = make_product(name="A", stock=5, price_cents=1000, unit_cost_cents=600)
    sale = sell({a.id: 3}, at=MON)
    ret = return_service.return_item(sale.lines[0]["id"], 1, occurred_at=TUE)
    return a, sale, ret


class TestSummarize:
    def test_worked_example(self, worked_example):
        summary = reporting_service.summarize()

        assert summary["gross_sales_cents"] == 3000
        assert summary["returns_amount_cents"] == 1000
        assert summary["net_sales_cents"] == 2000
        assert summary["cogs_cents"] == 1200
        assert summary["gross_profit_cents"] == 800
        assert summary["voids_amount_cents"] == 0
        assert summary["transaction_counts"] == {"sales": 1, "voids": 0, "returns": 1, "total": 2}
        assert summary["anomalies"] == []

    def test_per_period_buckets(self, worked_example):
        summary = reporting_service.summarize(granularity="daily")
        buckets = {b["period"]: b for b in summary["per_period"]}

        assert list(buckets) == ["2026-03-02", "2026-03-03"]
        assert buckets["2026-03-02"]["gross_sales_cents"] == 3000
        assert buckets["2026-03-02"]["cogs_cents"] == 1800
        assert buckets["2026-03-03"]["returns_amount_cents"] == 1000
        assert buckets["2026-03-03"]["net_sales_cents"] == -1000

        weekly = reporting_service.summarize(granularity="weekly")
        assert [b["period"] for b in weekly["per_period"]] == ["2026-03-02"]
        assert weekly["per_period"][0]["net_sales_cents"] == 2000

        monthly = reporting_service.summarize(granularity="monthly")
        assert [b["period"] for b in monthly["per_period"]] == ["2026-03"]

    def test_range_filters_records(self, worked_example):
        monday_only = reporting_service.summarize(MON.replace(hour=0), MON.replace(hour=23, minute=59))
        assert monday_only["gross_sales_cents"] == 3000
        assert monday_only["returns_amount_cents"] == 0

        by_date_strings = reporting_service.summarize("2026-03-03", "2026-03-03")
        assert by_date_strings["gross_sales_cents"] == 0
        assert by_date_strings["returns_amount_cents"] == 1000

    def test_idempotent(self, worked_example):
        assert reporting_service.summarize() == reporting_service.summarize()

    def test_voided_sale_excluded(self, db_session, make_product, sell):
        a = make_product(stock=5, price_cents=1000)
        sale = sell({a.id: 2}, at=MON)
        void_service.void_transaction(sale.transaction_no, occurred_at=MON + timedelta(minutes=5))

        summary = reporting_service.summarize()
        assert summary["gross_sales_cents"] == 0
        assert summary["voids_amount_cents"] == 2000
        assert summary["net_sales_cents"] == 0
        assert summary["cogs_cents"] == 0
        assert summary["transaction_counts"]["sales"] == 0
        assert summary["transaction_counts"]["voids"] == 1

    def test_void_in_later_period_still_excludes_sale(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 2}, at=MON)
        void_service.void_transaction(sale.transaction_no, occurred_at=WED)

        monday = reporting_service.summarize(MON.replace(hour=0), MON.replace(hour=23))
        assert monday["gross_sales_cents"] == 0
        assert monday["voids_amount_cents"] == 0

    def test_return_on_voided_line_not_counted(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 2}, at=MON)
        return_service.return_item(sale.lines[0]["id"], 1, occurred_at=TUE)

        # Legacy data: a void written beside a return, bypassing the write-path checks
        checkout = find_transaction(sale.transaction_no)
        void = open_transaction(kind="void", ts=checkout.correlation_ts, created_at=WED)
        for record in checkout.records:
            append_record(
                header=void, product_id=record.product_id, quantity=-record.quantity,
                unit_price_cents=record.unit_price_cents, snapshot_from=record,
            )
        db_session.commit()

        summary = reporting_service.summarize()
        assert summary["gross_sales_cents"] == 0
        assert summary["returns_amount_cents"] == 0
        assert summary["voids_amount_cents"] == 2000

    def test_orphan_void_flagged_not_raised(self, db_session, make_product):
        a = make_product(stock=5)
        orphan = open_transaction(kind="void", ts=12345, created_at=MON)
        append_record(header=orphan, product_id=a.id, quantity=-1, unit_price_cents=1000, product=a)
        db_session.commit()

        summary = reporting_service.summarize()
        assert {"type": "orphan_void", "ref_id": "void-12345"} in summary["anomalies"]
        assert summary["voids_amount_cents"] == 1000

        report = reporting_service.integrity_report()
        assert report["ok"] is False
        assert [o["ref_id"] for o in report["orphan_voids"]] == ["void-12345"]

    def test_missing_cost_uses_product_row_then_zero(self, db_session, make_product, sell):
        a = make_product(stock=5, unit_cost_cents=None)
        sell({a.id: 2}, at=MON)

        summary = reporting_service.summarize()
        assert summary["cogs_cents"] == 0
        assert [(x["type"], x["product_id"]) for x in summary["anomalies"]] == [("missing_cost", a.id)]

        products_service.update_product(product_id=a.id, patch={"unit_cost_cents": 400})
        products_service.soft_delete_product(a.id)
        summary = reporting_service.summarize()
        assert summary["cogs_cents"] == 800
        assert summary["anomalies"] == []

    def test_deleted_product_keeps_history(self, worked_example):
        a, _, _ = worked_example
        products_service.soft_delete_product(a.id)
        assert reporting_service.summarize()["gross_profit_cents"] == 800

    def test_bad_parameters(self, db_session):
        with pytest.raises(ReportError):
            reporting_service.summarize(granularity="hourly")
        with pytest.raises(ReportError):
            reporting_service.summarize("not-a-date")
        with pytest.raises(ReportError):
            reporting_service.summarize(WED, MON)


class TestGrowth:
    def test_growth_rate(self):
        assert growth_rate(150, 100) == 50.0
        assert growth_rate(50, 100) == -50.0
        assert growth_rate(500, 0) == 100.0
        assert growth_rate(0, 0) == 0.0

    def test_trend_label(self):
        assert trend_label(3, 0) == "+100%"
        assert trend_label(0, 0) == "+0%"
        assert trend_label(3, 2) == "+50%"
        assert trend_label(1, 2) == "-50%"

    def test_summary_for_period_zero_previous(self, db_session, make_product, sell):
        a = make_product(stock=10)
        now = datetime(2026, 3, 10, 15, 0, 0)
        sell({a.id: 2}, at=now - timedelta(hours=1))

        summary = reporting_service.summary_for_period("daily", now=now)
        assert summary["net_sales_cents"] == 2000
        assert summary["previous_net_sales_cents"] == 0
        assert summary["sales_growth_pct"] == 100.0

    def test_summary_for_period_all_has_no_growth(self, db_session):
        summary = reporting_service.summary_for_period("all")
        assert summary["sales_growth_pct"] is None
        assert summary["gross_sales_cents"] == 0


class TestSupplementaryReports:
    def test_receipts_hide_voided(self, db_session, make_product, sell):
        a = make_product(stock=10)
        kept = sell({a.id: 1}, at=MON)
        voided = sell({a.id: 2}, at=TUE)
        void_service.void_transaction(voided.transaction_no)

        listed = reporting_service.receipts()
        assert [r["transaction_no"] for r in listed] == [kept.transaction_no]
        assert len(reporting_service.receipts(include_voided=True)) == 2

        receipt = reporting_service.get_receipt(voided.transaction_no)
        assert receipt["voided"] is True
        assert receipt["lines"][0]["returnable_quantity"] == 0

    def test_receipt_tracks_returns(self, worked_example):
        _, sale, _ = worked_example
        receipt = reporting_service.get_receipt(sale.transaction_no)
        assert receipt["total_cents"] == 3000
        assert receipt["returned_cents"] == 1000
        assert receipt["net_cents"] == 2000
        assert receipt["lines"][0]["returned_quantity"] == 1
        assert receipt["lines"][0]["returnable_quantity"] == 2

    def test_top_products_and_trend(self, db_session, make_product, sell):
        a = make_product(name="A", stock=50)
        b = make_product(name="B", stock=50)
        now = datetime(2026, 3, 20, 12, 0, 0)
        sell({a.id: 2}, at=now - timedelta(days=10))
        sell({a.id: 3, b.id: 5}, at=now - timedelta(days=1))

        report = reporting_service.top_products("7days", limit=5, now=now)
        rows = {r["product_id"]: r for r in report["products"]}
        assert [r["product_id"] for r in report["products"]] == [b.id, a.id]
        assert rows[b.id]["trend"] == "+100%"
        assert rows[a.id]["trend"] == "+50%"

    def test_profit_margin(self, worked_example):
        report = reporting_service.profit_margin()
        assert report["revenue_cents"] == 2000
        assert report["cost_cents"] == 1200
        assert report["profit_cents"] == 800
        assert report["margin_pct"] == 40.0

    def test_stock_movements_paginated(self, worked_example):
        everything = reporting_service.stock_movements()
        assert everything["total"] == 3
        assert {m["type"] for m in everything["items"]} == {"manual", "sale", "refund"}

        page = reporting_service.stock_movements(page=2, page_size=1)
        assert len(page["items"]) == 1
        assert reporting_service.stock_movements(movement_type="sale")["total"] == 1
        with pytest.raises(ReportError):
            reporting_service.stock_movements(page=0)

    def test_integrity_clean_ledger(self, worked_example):
        report = reporting_service.integrity_report()
        assert report == {"ok": True, "orphan_voids": [], "stock_drift": []}


class TestCompensationItems:
    def test_itemized_returns_and_voids(self, db_session, make_product, sell):
        a = make_product(name="A", stock=10, price_cents=1000)
        kept = sell({a.id: 3}, at=MON, user_id=4)
        ret = return_service.return_item(kept.lines[0]["id"], 1, "damaged", user_id=9, occurred_at=TUE)
        cancelled = sell({a.id: 2}, at=MON)
        void = void_service.void_transaction(
            cancelled.transaction_no, user_id=5, approved_by_user_id=1, reason="mistake", occurred_at=WED
        )

        returned = reporting_service.returned_items()
        assert returned["total_refund_cents"] == 1000
        assert returned["rows"] == [{
            "date": "2026-03-03T10:00:00Z",
            "transaction_no": ret.transaction_no,
            "product_id": a.id,
            "product_name": "A",
            "quantity": 1,
            "refund_cents": 1000,
            "reason": "damaged",
            "handled_by_user_id": 9,
            "sale_line_id": kept.lines[0]["id"],
        }]

        voided = reporting_service.void_items()
        assert voided["total_void_cents"] == 2000
        [row] = voided["rows"]
        assert row["transaction_no"] == void.transaction_no
        assert (row["quantity"], row["void_amount_cents"]) == (2, 2000)
        assert (row["reason"], row["handled_by_user_id"], row["approved_by_user_id"]) == ("mistake", 5, 1)

        assert reporting_service.returned_items("2026-03-04", "2026-03-04")["rows"] == []
        assert len(reporting_service.void_items("2026-03-04", "2026-03-04")["rows"]) == 1
        with pytest.raises(ReportError):
            reporting_service.void_items("yesterday")

    def test_return_on_voided_line_not_itemized(self, db_session, make_product, sell):
        a = make_product(stock=5)
        sale = sell({a.id: 2}, at=MON)
        return_service.return_item(sale.lines[0]["id"], 1, occurred_at=TUE)

        checkout = find_transaction(sale.transaction_no)
        void = open_transaction(kind="void", ts=checkout.correlation_ts, created_at=WED)
        for record in checkout.records:
            append_record(
                header=void, product_id=record.product_id, quantity=-record.quantity,
                unit_price_cents=record.unit_price_cents, snapshot_from=record,
            )
        db_session.commit()

        assert reporting_service.returned_items()["rows"] == []
        assert reporting_service.summarize()["returns_amount_cents"] == 0
        assert len(reporting_service.void_items()["rows"]) == 1
