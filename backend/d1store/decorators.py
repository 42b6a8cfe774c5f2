# Overview: Session decorators for API routes.

from functools import wraps
from flask import jsonify, g

from .services import session_service


def require_role(*roles: str):
    """
    Require a signed-in session, optionally limited to roles.

    Sets g.current_user (dict with role/email/displayName) and g.role.
    Returns 401 without a valid session, 403 when the role is not allowed.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = session_service.current_user()
            if not user:
                return jsonify({"error": "Authentication required"}), 401
            if roles and user["role"] not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            g.current_user = user
            g.role = user["role"]
            return f(*args, **kwargs)

        return decorated_function

    return decorator


require_auth = require_role()
