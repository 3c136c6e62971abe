# Overview: Flask API routes for stock ledger operations; parses input and returns JSON responses.

"""
Stock routes.

All quantities in responses are pieces. Add/remove accept packets and/or
pieces; packets are converted with the tile's packet size (add may also set
a new permanent packet size).

MULTI-TENANT: tiles outside the caller's shop answer 404.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth, require_role
from ..models import ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN
from ..services import stock_service
from ..services.units import to_packets_and_loose
from ..validation import coerce_int, parse_pagination

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _stock_row(tile) -> dict:
    row = tile.to_dict()
    packets, loose = to_packets_and_loose(tile.available_quantity, tile.items_per_packet)
    row["available_packets"] = packets
    row["available_loose_pieces"] = loose
    return row


def _movement_response(tile, txn, verb: str):
    total = abs(txn.quantity)
    return jsonify({
        "message": (
            f"Stock {verb} successfully: {txn.packets} packet(s) + {txn.pieces} piece(s) "
            f"= {total} total pieces"
        ),
        "tile": _stock_row(tile),
        "transaction": txn.to_dict(),
    }), 200


@stock_bp.get("")
@require_auth
def list_stock_route():
    """
    Stock overview, emptiest tiles first.

    Query params: search, shop_id (grand admin), page, limit
    """
    try:
        page, limit = parse_pagination(request.args)
        result = stock_service.list_stock(
            g.caller,
            search=request.args.get("search"),
            shop_id=request.args.get("shop_id", type=int),
            page=page,
            limit=limit,
        )
        result["tiles"] = [_stock_row(t) for t in result["tiles"]]
        return jsonify(result), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@stock_bp.post("/add")
@require_auth
def add_stock_route():
    """
    Body: {"tile_id", "packets", "pieces", "new_items_per_packet", "notes"}
    """
    data = request.get_json(silent=True) or {}
    try:
        tile_id = coerce_int(data.get("tile_id"), "tile_id", minimum=1)
        tile, txn = stock_service.add_stock(
            g.caller,
            tile_id,
            packets=data.get("packets"),
            pieces=data.get("pieces"),
            new_items_per_packet=data.get("new_items_per_packet"),
            notes=data.get("notes"),
        )
        return _movement_response(tile, txn, "added")
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/remove")
@require_auth
def remove_stock_route():
    """
    Body: {"tile_id", "packets", "pieces", "notes"}
    """
    data = request.get_json(silent=True) or {}
    try:
        tile_id = coerce_int(data.get("tile_id"), "tile_id", minimum=1)
        tile, txn = stock_service.remove_stock(
            g.caller,
            tile_id,
            packets=data.get("packets"),
            pieces=data.get("pieces"),
            notes=data.get("notes"),
        )
        return _movement_response(tile, txn, "removed")
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.put("/<int:tile_id>")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def set_quantity_route(tile_id: int):
    """
    Overwrite on-hand quantity (audited as an adjustment).

    Body: {"quantity": int, "notes": str}
    """
    data = request.get_json(silent=True) or {}
    try:
        tile, txn = stock_service.set_quantity(
            g.caller,
            tile_id,
            data.get("quantity"),
            notes=data.get("notes"),
        )
        return jsonify({
            "message": "Stock updated successfully",
            "tile": _stock_row(tile),
            "transaction": txn.to_dict(),
        }), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set stock quantity")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/<int:tile_id>/transactions")
@require_auth
def tile_transactions_route(tile_id: int):
    try:
        limit = request.args.get("limit", 50, type=int)
        limit = max(1, min(limit, current_app.config.get("MAX_PAGE_SIZE", 100)))
        transactions = stock_service.list_tile_transactions(g.caller, tile_id, limit=limit)
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@stock_bp.get("/<int:tile_id>/reconcile")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def reconcile_tile_route(tile_id: int):
    try:
        return jsonify(stock_service.reconcile_tile(tile_id, caller=g.caller)), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
