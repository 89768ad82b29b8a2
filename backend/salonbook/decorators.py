# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .permissions import has_permission

TENANT_HEADER = "X-Tenant-Id"
BRANCH_HEADER = "X-Branch-Id"
USER_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"


def _header_int(name: str):
    """Integer header value; None when absent, ValueError when malformed."""
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw.strip())


def _is_authenticated() -> bool:
    return hasattr(g, "tenant_id") and hasattr(g, "role")


def require_auth(f):
    """
    Establish the principal forwarded by the gateway.

    Authentication itself happens upstream; the gateway forwards the
    resolved principal as headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: tenant context - REQUIRED
    - g.branch_id: branch scope (None for tenant-wide roles)
    - g.user_id: acting user (may be None for service calls)
    - g.role: role name used for permission checks - REQUIRED

    Returns 401 if the tenant or role header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            tenant_id = _header_int(TENANT_HEADER)
            branch_id = _header_int(BRANCH_HEADER)
            user_id = _header_int(USER_HEADER)
        except ValueError:
            return jsonify({"error": "Invalid principal headers"}), 401

        role = (request.headers.get(ROLE_HEADER) or "").strip().lower()
        if not tenant_id or not role:
            return jsonify({"error": "Authentication required"}), 401

        g.tenant_id = tenant_id
        g.branch_id = branch_id
        g.user_id = user_id
        g.role = role

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a capability from the role table in app config."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            table = current_app.config["ROLE_PERMISSIONS"]
            if not has_permission(g.role, permission_code, table):
                current_app.logger.warning(
                    "Permission denied: role=%s tenant=%s permission=%s path=%s",
                    g.role, g.tenant_id, permission_code, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
