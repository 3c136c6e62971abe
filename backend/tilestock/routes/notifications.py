# Overview: Flask API routes for low-stock notifications.

from flask import Blueprint, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth
from ..services import low_stock_service
from tilestock.time_utils import to_utc_z

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/low-stock")
@require_auth
def low_stock_route():
    """
    Low-stock entries for the caller's shop (grand admins pass shop_id).

    show_dialog is true until the current session acknowledges the alert.
    """
    try:
        result = low_stock_service.session_alert(
            g.session_context.session,
            g.caller,
            request.args.get("shop_id", type=int),
        )
        result["entries"] = [entry.to_dict() for entry in result["entries"]]
        return jsonify(result), 200
    except EXPECTED_ERRORS as e:
        return error_response(e)


@notifications_bp.post("/low-stock/ack")
@require_auth
def acknowledge_low_stock_route():
    session = low_stock_service.acknowledge_alert(g.session_context.session)
    return jsonify({"acknowledged_at": to_utc_z(session.low_stock_alert_seen_at)}), 200
