"""
Role Decorators: JWT-aware global-role checks for route protection.

Global roles (User.role) gate application-wide actions such as creating
projects or managing users; project-scoped rights live in
project_access.require_project_access.

Usage:
    @bp.route("/api/v1/admin/users", methods=["GET"])
    @require_role("admin")
    def list_users():
        ...
"""

import functools
import logging

from flask import g, jsonify

logger = logging.getLogger(__name__)


def require_role(*roles: str):
    """
    Decorator: require the JWT user's global role to be one of ``roles``.

    Args:
        roles: Allowed global roles, e.g. "admin", "lead".
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({
                    "error": "Authentication required",
                    "redirect": "/auth/login",
                }), 401

            if user.role not in roles:
                logger.warning(
                    "User %d denied: role '%s' not in %s on %s",
                    user.id, user.role, roles, f.__name__,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required": list(roles),
                }), 403

            return f(*args, **kwargs)
        return decorated
    return decorator
