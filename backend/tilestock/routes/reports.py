# Overview: Flask API routes for transaction reports; parses input and returns JSON responses.

"""
Transaction report routes.

Query params shared by GET and DELETE /api/reports:
- start_date, end_date: ISO-8601; end_date covers the whole day
- type: all | stock_in | stock_out | adjustment | sale | return
- shop_id: grand admin only

Purging records never changes tile stock.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth, require_role
from ..models import ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN
from ..services import reporting_service
from ..validation import parse_date_arg, parse_pagination

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _filters() -> dict:
    return {
        "shop_id": request.args.get("shop_id", type=int),
        "start_date": parse_date_arg(request.args, "start_date"),
        "end_date": parse_date_arg(request.args, "end_date"),
        "transaction_type": request.args.get("type"),
    }


@reports_bp.get("")
@require_auth
def list_transactions_route():
    try:
        page, limit = parse_pagination(request.args)
        result = reporting_service.query_transactions(g.caller, page=page, limit=limit, **_filters())
        result["transactions"] = [t.to_dict() for t in result["transactions"]]
        return jsonify(result), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to query transactions")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.delete("")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def clear_transactions_route():
    try:
        count = reporting_service.clear_filtered(g.caller, **_filters())
        return jsonify({"message": f"Deleted {count} transaction(s)", "deleted": count}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clear transactions")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.delete("/<int:transaction_id>")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def delete_transaction_route(transaction_id: int):
    try:
        if not reporting_service.delete_transaction(g.caller, transaction_id):
            return jsonify({"error": "Transaction not found"}), 404
        return jsonify({"message": "Transaction deleted successfully"}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete transaction")
        return jsonify({"error": "Internal server error"}), 500
