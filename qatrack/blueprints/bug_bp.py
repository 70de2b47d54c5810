"""
Bug Blueprint: bug tracking with guarded workflow, comments and history.

Endpoints:
  GET    /api/v1/bugs                      - List (?project=, status, priority, severity,
                                             assigned_to, test_case_id, search)
  POST   /api/v1/bugs                      - Report a bug (body project_id)
  GET    /api/v1/bugs/<id>                 - Detail + comments + latest history
  PUT    /api/v1/bugs/<id>                 - Update (member admin/lead or assignee)
  GET    /api/v1/bugs/<id>/history         - Full change history
  GET    /api/v1/bugs/<id>/comments        - Comments, oldest first
  POST   /api/v1/bugs/<id>/comments        - Add a comment
"""

import logging

from flask import Blueprint, g, jsonify, request

from qatrack.blueprints import (
    json_body,
    paginate_query,
    register_error_handlers,
    resolve_project_param,
)
from qatrack.core.exceptions import ValidationError
from qatrack.models import db
from qatrack.services import bug_service
from qatrack.services.bug_service import InvalidTransitionError
from qatrack.utils.helpers import db_commit_or_error, parse_int

logger = logging.getLogger(__name__)

bug_bp = Blueprint("bug_bp", __name__, url_prefix="/api/v1/bugs")
register_error_handlers(bug_bp)

_LIST_FILTERS = ("status", "priority", "severity", "assigned_to", "test_case_id", "search")


@bug_bp.errorhandler(InvalidTransitionError)
def _handle_invalid_transition(error: InvalidTransitionError):
    db.session.rollback()
    return jsonify({
        "error": str(error),
        "details": error.details,
        "allowed": error.allowed,
    }), 422


@bug_bp.route("", methods=["GET"])
def list_bugs():
    """List a project's bugs; defaults to the caller's first project."""
    project_id, err = resolve_project_param()
    if err:
        return err
    if project_id is None:
        return jsonify({"items": [], "total": 0, "redirect": "/projects"}), 200

    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    query = bug_service.list_bugs(g.jwt_user_id, project_id, filters)
    items, total = paginate_query(query)
    return jsonify({
        "items": [b.to_dict() for b in items],
        "total": total,
        "project_id": project_id,
    }), 200


@bug_bp.route("", methods=["POST"])
def create_bug():
    """
    Body: { "project_id": 1, "title": "...", "priority": "high", "severity": "major",
            "test_case_id": 3, "assigned_to": 7, "description": "...", ... }
    """
    data = json_body()
    project_id = parse_int(data.get("project_id") or request.args.get("project"))
    if project_id is None:
        return jsonify({"error": "project_id is required"}), 400
    if not str(data.get("title") or "").strip():
        return jsonify({"error": "title is required"}), 400

    bug = bug_service.create_bug(g.jwt_user_id, project_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(bug.to_dict()), 201


@bug_bp.route("/<int:bug_id>", methods=["GET"])
def get_bug(bug_id):
    return jsonify(bug_service.get_bug_detail(g.jwt_user_id, bug_id)), 200


@bug_bp.route("/<int:bug_id>", methods=["PUT", "PATCH"])
def update_bug(bug_id):
    data = json_body()
    if not data:
        return jsonify({"error": "No fields to update"}), 400

    bug = bug_service.update_bug(g.jwt_user_id, bug_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(bug.to_dict()), 200


@bug_bp.route("/<int:bug_id>/history", methods=["GET"])
def bug_history(bug_id):
    rows = bug_service.list_history(g.jwt_user_id, bug_id)
    return jsonify({"items": [h.to_dict() for h in rows], "total": len(rows)}), 200


# ═══════════════════════════════════════════════════════════════
# Comments
# ═══════════════════════════════════════════════════════════════
@bug_bp.route("/<int:bug_id>/comments", methods=["GET"])
def list_comments(bug_id):
    comments = bug_service.list_comments(g.jwt_user_id, bug_id)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)}), 200


@bug_bp.route("/<int:bug_id>/comments", methods=["POST"])
def add_comment(bug_id):
    data = json_body()
    if not str(data.get("comment") or "").strip():
        return jsonify({"error": "comment is required"}), 400

    try:
        comment = bug_service.add_comment(g.jwt_user_id, bug_id, data["comment"])
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201
