"""
QA Track
Blueprint registry.
"""

import logging

from flask import abort, g, jsonify, request
from werkzeug.exceptions import HTTPException

from qatrack.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from qatrack.models import db
from qatrack.services.permission_service import first_accessible_project_id
from qatrack.utils.helpers import parse_int

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 200, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body():
    """Request JSON as a dict; 400 when the body is JSON but not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object")
    return data


def resolve_project_param():
    """Project scope for list endpoints: ``?project=<id>`` or the user's first project.

    Returns:
        (project_id, None) or (None, error_response). project_id is None
        with no error when the user belongs to no project.
    """
    raw = request.args.get("project")
    if raw not in (None, ""):
        project_id = parse_int(raw)
        if project_id is None:
            return None, (jsonify({"error": "project must be an integer"}), 400)
        return project_id, None
    return first_accessible_project_id(g.jwt_user_id), None


def register_error_handlers(bp):
    """Map service exceptions to JSON responses for every route of ``bp``.

    Services flush before raising, so each handler rolls the session back
    before answering.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return jsonify({"error": str(error)}), 404

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return jsonify({"error": str(error), "details": error.details}), 422

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return jsonify({"error": str(error)}), 409

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        db.session.rollback()
        return jsonify({"error": str(error)}), 403

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error"}), 500
