# Overview: Flask API routes for tile operations; parses input and returns JSON responses.

"""
Tile catalogue routes with multi-tenant support.

MULTI-TENANT: Tiles are scoped to the caller's shop. Grand admins may pass
shop_id to list or create tiles in a particular shop.

SECURITY: All routes require authentication.
- Read operations: any role
- Create / update / delete: grand_admin or shop_admin
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth, require_role
from ..models import ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN, Tile
from ..services import tile_service
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_tile,
    parse_pagination,
    validate_payload,
)

TILE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "price_cents",
        "quantity",
        "items_per_packet",
        "minimum_threshold",
        "is_active",
    },
    required_on_create={"name"},
)

tiles_bp = Blueprint("tiles", __name__, url_prefix="/api/tiles")


@tiles_bp.get("")
@require_auth
def list_tiles_route():
    """
    List tiles, newest first.

    Query params:
    - search: matches name or SKU
    - shop_id: grand admin only; ignored for shop users
    - page / limit: 1-indexed pagination (limit max 100)
    """
    try:
        page, limit = parse_pagination(request.args)
        result = tile_service.list_tiles(
            g.caller,
            search=request.args.get("search"),
            shop_id=request.args.get("shop_id", type=int),
            page=page,
            limit=limit,
        )
        result["tiles"] = [t.to_dict() for t in result["tiles"]]
        return jsonify(result), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@tiles_bp.get("/<int:tile_id>")
@require_auth
def get_tile_route(tile_id: int):
    try:
        return jsonify({"tile": tile_service.get_tile(g.caller, tile_id).to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@tiles_bp.post("")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def create_tile_route():
    """
    Create a new tile.

    Body: tile fields plus optional "images" (list of URLs) and, for grand
    admins, "shop_id". A missing sku is allocated automatically.
    """
    payload = dict(request.get_json(silent=True) or {})
    images = payload.pop("images", None)
    shop_id = payload.pop("shop_id", None)

    try:
        patch = validate_payload(model=Tile, payload=payload, policy=TILE_POLICY, partial=False)
        enforce_rules_tile(patch)
        tile = tile_service.create_tile(g.caller, patch, shop_id=shop_id, images=images)
        return jsonify({"tile": tile.to_dict()}), 201
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create tile")
        return jsonify({"error": "Internal server error"}), 500


@tiles_bp.put("/<int:tile_id>")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def update_tile_route(tile_id: int):
    payload = dict(request.get_json(silent=True) or {})
    images = payload.pop("images", None)
    payload.pop("shop_id", None)

    try:
        patch = validate_payload(model=Tile, payload=payload, policy=TILE_POLICY, partial=True)
        enforce_rules_tile(patch)
        tile = tile_service.update_tile(g.caller, tile_id, patch, images=images)
        return jsonify({"tile": tile.to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update tile")
        return jsonify({"error": "Internal server error"}), 500


@tiles_bp.delete("/<int:tile_id>")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def delete_tile_route(tile_id: int):
    try:
        tile_service.delete_tile(g.caller, tile_id)
        return jsonify({"message": "Tile deleted successfully"}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete tile")
        return jsonify({"error": "Internal server error"}), 500
