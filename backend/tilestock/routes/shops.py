# Overview: Flask API routes for shop operations; parses input and returns JSON responses.

"""
Shop management routes.

MULTI-TENANT: Non-grand-admin callers only ever see their own shop.
Create / update / delete are grand admin only; settings may also be changed
by the shop's own admin.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth, require_role
from ..models import ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN, Shop
from ..services import reporting_service, shop_service
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_shop,
    validate_payload,
)

SHOP_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "address_street",
        "address_city",
        "address_state",
        "address_zip_code",
        "address_country",
        "contact_phone",
        "contact_email",
        "low_stock_threshold",
    },
    required_on_create={"name"},
)

shops_bp = Blueprint("shops", __name__, url_prefix="/api/shops")


def _shop_patch(payload: dict, *, partial: bool) -> dict:
    flat = shop_service.flatten_shop_payload(payload)
    patch = validate_payload(model=Shop, payload=flat, policy=SHOP_POLICY, partial=partial)
    enforce_rules_shop(patch)
    return patch


@shops_bp.get("")
@require_auth
def list_shops_route():
    shops = shop_service.list_shops(g.caller)
    return jsonify({"shops": [s.to_dict() for s in shops], "count": len(shops)}), 200


@shops_bp.get("/overview")
@require_auth
@require_role(ROLE_GRAND_ADMIN)
def shops_overview_route():
    try:
        return jsonify({"overview": reporting_service.shops_overview(g.caller)}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build shops overview")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.get("/<int:shop_id>")
@require_auth
def get_shop_route(shop_id: int):
    try:
        return jsonify({"shop": shop_service.get_shop(g.caller, shop_id).to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@shops_bp.post("")
@require_auth
@require_role(ROLE_GRAND_ADMIN)
def create_shop_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = _shop_patch(payload, partial=False)
        shop = shop_service.create_shop(g.caller, patch)
        return jsonify({"shop": shop.to_dict()}), 201
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create shop")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.put("/<int:shop_id>")
@require_auth
@require_role(ROLE_GRAND_ADMIN)
def update_shop_route(shop_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = _shop_patch(payload, partial=True)
        shop = shop_service.update_shop(g.caller, shop_id, patch)
        return jsonify({"shop": shop.to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update shop")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.put("/<int:shop_id>/settings")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def update_settings_route(shop_id: int):
    """Body: {"low_stock_threshold": int}"""
    payload = request.get_json(silent=True) or {}
    try:
        threshold = coerce_int(payload.get("low_stock_threshold"), "low_stock_threshold", minimum=0)
        shop = shop_service.update_settings(g.caller, shop_id, threshold)
        return jsonify({"shop": shop.to_dict()}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update shop settings")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.delete("/<int:shop_id>")
@require_auth
@require_role(ROLE_GRAND_ADMIN)
def delete_shop_route(shop_id: int):
    try:
        shop_service.delete_shop(g.caller, shop_id)
        return jsonify({"message": "Shop deleted successfully"}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete shop")
        return jsonify({"error": "Internal server error"}), 500


@shops_bp.get("/<int:shop_id>/statistics")
@require_auth
def shop_statistics_route(shop_id: int):
    try:
        return jsonify({"statistics": reporting_service.shop_statistics(g.caller, shop_id)}), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute shop statistics")
        return jsonify({"error": "Internal server error"}), 500
