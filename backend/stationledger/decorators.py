# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g

from .permissions import ROLES
from .services.access_service import CallerContext


USER_HEADER = "X-User-Id"
STATION_HEADER = "X-Station-Id"
ROLE_HEADER = "X-User-Role"


def _optional_int_header(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw.strip())


def require_caller(f):
    """
    Resolve the caller context forwarded by the authenticating gateway.

    Sets g.caller to a CallerContext built from:
    - X-User-Id: the authenticated user
    - X-Station-Id: the station the user is bound to (optional for admins)
    - X-User-Role: admin, manager or cashier

    SECURITY: Returns 401 if the headers are missing or malformed. Session
    and token handling happen upstream; this service trusts the gateway.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        role = (request.headers.get(ROLE_HEADER) or "").strip().lower()
        try:
            user_id = _optional_int_header(USER_HEADER)
            station_id = _optional_int_header(STATION_HEADER)
        except ValueError:
            return jsonify({"error": "Invalid caller headers", "kind": "Unauthenticated", "details": {}}), 401

        if user_id is None or role not in ROLES:
            return jsonify({"error": "Authentication required", "kind": "Unauthenticated", "details": {}}), 401

        caller = CallerContext(user_id=user_id, station_id=station_id, role=role)
        if station_id is None and not caller.is_unrestricted:
            return jsonify({
                "error": "Station-bound callers must send X-Station-Id",
                "kind": "Unauthenticated",
                "details": {},
            }), 401

        g.caller = caller
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for the resolved caller."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_caller was called first
            caller = getattr(g, "caller", None)
            if caller is None:
                return jsonify({"error": "Authentication required", "kind": "Unauthenticated", "details": {}}), 401

            if not caller.can(permission_code):
                current_app.logger.warning(
                    "Permission %s denied for user_id=%s role=%s on %s %s",
                    permission_code, caller.user_id, caller.role, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "kind": "AccessDenied",
                    "details": {"required_permission": permission_code},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
