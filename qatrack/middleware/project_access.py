"""
Project Access Middleware: Verifies project membership for JWT users.

Provides the `@require_project_access` decorator that checks whether the
authenticated user is a member of the project named by a route parameter,
optionally with one of the given member roles.

Usage:
    @bp.route("/api/v1/projects/<int:project_id>/members", methods=["POST"])
    @require_project_access("project_id", roles=("admin", "lead"))
    def add_member(project_id):
        ...  # Only reachable by project admins/leads

The matched ProjectMember row is exposed as ``g.membership``.
"""

import functools
import logging

from flask import g, jsonify, request

from qatrack.core.exceptions import NotFoundError, PermissionDeniedError
from qatrack.services.permission_service import require_membership

logger = logging.getLogger(__name__)


def require_project_access(param_name: str = "project_id", roles: tuple | None = None):
    """
    Decorator: require the JWT user to be a member of the project
    identified by the given route parameter.

    Args:
        param_name: Name of the Flask route parameter containing the project ID.
        roles: Optional member roles allowed; any membership when None.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return jsonify({
                    "error": "Authentication required",
                    "redirect": "/auth/login",
                }), 401

            project_id = kwargs.get(param_name)
            if project_id is None:
                project_id = (request.view_args or {}).get(param_name)

            try:
                membership = require_membership(user_id, project_id, roles)
            except NotFoundError as exc:
                return jsonify({"error": str(exc)}), 404
            except PermissionDeniedError as exc:
                logger.warning(
                    "User %s denied on project %s (%s) endpoint=%s",
                    user_id, project_id, exc, request.endpoint,
                )
                return jsonify({"error": str(exc)}), 403

            g.membership = membership
            return f(*args, **kwargs)
        return decorated
    return decorator
