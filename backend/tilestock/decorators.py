# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import DomainError, PersistenceFailure
from .services import session_service
from .validation import ConflictError, ValidationError


# Exceptions routes translate with error_response(); anything else is a 500
EXPECTED_ERRORS = (DomainError, ValidationError, ConflictError)


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'caller')


def require_auth(f):
    """
    Require authentication and establish the caller identity.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.caller: CallerIdentity (user_id, role, shop_id) captured at login
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account or shop deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.caller = context.caller
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the authenticated caller to hold one of `roles`.

    Must be stacked below @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.caller.role not in roles:
                current_app.logger.warning(
                    "Permission denied: user %s (%s) on %s %s",
                    g.caller.user_id, g.caller.role, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "kind": "permission_denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def error_response(exc: Exception):
    """
    Translate an expected service-layer exception into a JSON response.

    PersistenceFailure carries its cause only when the app runs in debug mode.
    """
    if isinstance(exc, PersistenceFailure):
        current_app.logger.error("Persistence failure: %r", exc.cause)
        return jsonify(exc.to_dict(include_cause=current_app.debug)), exc.status_code
    if isinstance(exc, DomainError):
        return jsonify(exc.to_dict()), exc.status_code
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc), "kind": "conflict", "details": {}}), 409
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc), "kind": "validation_error", "details": {}}), 400
    raise exc
