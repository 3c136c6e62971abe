# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /api/auth/login    email + password -> bearer token
- POST /api/auth/logout   revoke the current token
- GET  /api/auth/me       current user and caller identity
- GET  /api/auth/users    users visible to the caller
- POST /api/auth/users    create a user (grand admin: any; shop admin: staff)

Self-registration does not exist; users are created by admins or the CLI.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import EXPECTED_ERRORS, error_response, require_auth, require_role
from ..models import ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN
from ..services import auth_service, session_service
from tilestock.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """Authenticate user and create session token."""
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
        }), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out successfully"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    caller = g.caller
    return jsonify({
        "user": g.current_user.to_dict(),
        "role": caller.role,
        "shop_id": caller.shop_id,
    }), 200


@auth_bp.get("/users")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def list_users_route():
    users = auth_service.list_users(g.caller)
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@auth_bp.post("/users")
@require_auth
@require_role(ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN)
def create_user_route():
    """
    Create a user.

    Body: {"email", "name", "password", "role", "shop_id"}
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            email=data.get("email"),
            name=data.get("name"),
            password=data.get("password"),
            role=data.get("role", "staff"),
            shop_id=data.get("shop_id"),
            caller=g.caller,
        )
        return jsonify({"user": user.to_dict()}), 201
    except EXPECTED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500
