# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales routes.

Lifecycle: pending -> confirmed -> delivered, with cancelled reachable from
pending/confirmed. New sales are created confirmed and reserve their stock.

- GET    /api/sales               list (filters: status, payment_status,
                                  customer_name, start_date, end_date, shop_id)
- POST   /api/sales               create and reserve
- GET    /api/sales/<id>          detail
- PUT    /api/sales/<id>          update payment/customer/totals/status
- DELETE /api/sales/<id>          cancel (releases reservations)
- POST   /api/sales/<id>/deliver  deliver (reserved pieces leave on-hand)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth
from ..services import sales_service
from ..validation import parse_date_arg, parse_pagination

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales_route():
    try:
        page, limit = parse_pagination(request.args)
        result = sales_service.list_sales(
            g.caller,
            shop_id=request.args.get("shop_id", type=int),
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            customer_name=request.args.get("customer_name"),
            start=parse_date_arg(request.args, "start_date"),
            end=parse_date_arg(request.args, "end_date"),
            page=page,
            limit=limit,
        )
        result["sales"] = [s.to_dict() for s in result["sales"]]
        return jsonify(result), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a sale.

    Body:
    {
        "customer": {"name", "phone", "email", "address"},
        "items": [{"tile_id", "quantity", "unit_price_cents"}],
        "discount_cents", "tax_cents", "payment_method", "payment_status",
        "shop_id" (grand admin only)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.create_sale(
            g.caller,
            customer=data.get("customer"),
            items=data.get("items"),
            shop_id=data.get("shop_id"),
            discount_cents=data.get("discount_cents", 0),
            tax_cents=data.get("tax_cents", 0),
            payment_method=data.get("payment_method", "cash"),
            payment_status=data.get("payment_status", "pending"),
        )
        return jsonify({"sale": sale.to_dict()}), 201
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sales_service.get_sale(g.caller, sale_id).to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@sales_bp.put("/<int:sale_id>")
@require_auth
def update_sale_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.update_sale(g.caller, sale_id, data)
        return jsonify({"sale": sale.to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
def cancel_sale_route(sale_id: int):
    try:
        sale = sales_service.cancel_sale(g.caller, sale_id)
        return jsonify({"message": "Sale cancelled successfully", "sale": sale.to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/deliver")
@require_auth
def deliver_sale_route(sale_id: int):
    try:
        sale = sales_service.deliver_sale(g.caller, sale_id)
        return jsonify({"message": "Sale delivered successfully", "sale": sale.to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deliver sale")
        return jsonify({"error": "Internal server error"}), 500
