# Overview: Flask API routes for reports; read-only views rebuilt from the ledger.

from flask import Blueprint, request, jsonify

from ..decorators import json_errors
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/summary")
@json_errors("build summary report")
def summary_report():
    """
    Query params:
    - period: daily|weekly|monthly|all (ignored when start or end is given)
    - start, end: ISO-8601 (date-only end means end of that day)
    - granularity: daily|weekly|monthly
    """
    granularity = request.args.get("granularity", "daily")
    start = request.args.get("start")
    end = request.args.get("end")
    if start or end:
        return jsonify(reporting_service.summarize(start, end, granularity))
    period = request.args.get("period", "all")
    return jsonify(reporting_service.summary_for_period(period, granularity))


@reports_bp.get("/receipts")
@json_errors("list receipts")
def receipts_report():
    include_voided = request.args.get("include_voided", "false").lower() == "true"
    items = reporting_service.receipts(
        request.args.get("start"),
        request.args.get("end"),
        request.args.get("transaction_no"),
        include_voided=include_voided,
    )
    return jsonify({"items": items, "count": len(items)})


@reports_bp.get("/receipts/<transaction_no>")
@json_errors("load receipt")
def receipt_detail(transaction_no: str):
    return jsonify(reporting_service.get_receipt(transaction_no))


@reports_bp.get("/top-products")
@json_errors("build top products report")
def top_products_report():
    period = request.args.get("period", "30days")
    limit = request.args.get("limit", 10, type=int)
    return jsonify(reporting_service.top_products(period, limit))


@reports_bp.get("/profit-margin")
@json_errors("build profit margin report")
def profit_margin_report():
    return jsonify(reporting_service.profit_margin(request.args.get("start"), request.args.get("end")))


@reports_bp.get("/stock-movements")
@json_errors("list stock movements")
def stock_movements_report():
    return jsonify(reporting_service.stock_movements(
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 50, type=int),
        movement_type=request.args.get("type"),
        product_id=request.args.get("product_id", type=int),
        start=request.args.get("start"),
        end=request.args.get("end"),
    ))


@reports_bp.get("/integrity")
@json_errors("check ledger integrity")
def integrity_report():
    return jsonify(reporting_service.integrity_report())


@reports_bp.get("/returned-items")
@json_errors("list returned items")
def returned_items_report():
    """Query params: start, end (ISO-8601; date-only end means end of that day)."""
    return jsonify(reporting_service.returned_items(request.args.get("start"), request.args.get("end")))


@reports_bp.get("/void-items")
@json_errors("list void items")
def void_items_report():
    return jsonify(reporting_service.void_items(request.args.get("start"), request.args.get("end")))
