"""
Project Blueprint: projects, members and bug form options.

Endpoints:
  GET    /api/v1/projects                          - Projects the user belongs to
  POST   /api/v1/projects                          - Create (global admin/lead)
  GET    /api/v1/projects/<id>                     - Detail with members
  PUT    /api/v1/projects/<id>                     - Update (member admin/lead)
  GET    /api/v1/projects/<id>/members             - List members
  POST   /api/v1/projects/<id>/members             - Add member by email
  PUT    /api/v1/projects/<id>/members/<member_id>: Change member role
  DELETE /api/v1/projects/<id>/members/<member_id>: Remove member
  GET    /api/v1/projects/<id>/bug-form-options    - Assignees + active test cases
"""

import logging

from flask import Blueprint, g, jsonify, request

from qatrack.blueprints import json_body, paginate_query, register_error_handlers
from qatrack.middleware.project_access import require_project_access
from qatrack.services import bug_service, project_service
from qatrack.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1/projects")
register_error_handlers(project_bp)


# ═══════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════
@project_bp.route("", methods=["GET"])
def list_projects():
    """List the caller's projects. Filters: status"""
    query = project_service.list_projects_for_user(g.jwt_user_id, request.args.get("status"))
    rows, total = paginate_query(query)
    items = []
    for project, role in rows:
        d = project.to_dict()
        d["my_role"] = role
        items.append(d)
    return jsonify({"items": items, "total": total}), 200


@project_bp.route("", methods=["POST"])
def create_project():
    data = json_body()
    if not str(data.get("name") or "").strip():
        return jsonify({"error": "name is required"}), 400

    project = project_service.create_project(g.current_user, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict(include_members=True)), 201


@project_bp.route("/<int:project_id>", methods=["GET"])
@require_project_access("project_id")
def get_project(project_id):
    project = project_service.get_project(g.jwt_user_id, project_id)
    d = project.to_dict(include_members=True)
    d["my_role"] = g.membership.role
    return jsonify(d), 200


@project_bp.route("/<int:project_id>", methods=["PUT"])
@require_project_access("project_id")
def update_project(project_id):
    data = json_body()
    project = project_service.update_project(g.jwt_user_id, project_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════
@project_bp.route("/<int:project_id>/members", methods=["GET"])
def list_members(project_id):
    members = project_service.list_members(g.jwt_user_id, project_id)
    return jsonify({"items": [m.to_dict() for m in members], "total": len(members)}), 200


@project_bp.route("/<int:project_id>/members", methods=["POST"])
def add_member(project_id):
    """Body: { "email": "...", "role": "tester" }"""
    data = json_body()
    email = str(data.get("email") or "").strip()
    if not email:
        return jsonify({"error": "email is required"}), 400

    member = project_service.add_member(
        g.jwt_user_id, project_id, email, data.get("role") or "tester",
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict()), 201


@project_bp.route("/<int:project_id>/members/<int:member_id>", methods=["PUT"])
def update_member(project_id, member_id):
    data = json_body()
    if not data.get("role"):
        return jsonify({"error": "role is required"}), 400

    member = project_service.update_member_role(g.jwt_user_id, project_id, member_id, data["role"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict()), 200


@project_bp.route("/<int:project_id>/members/<int:member_id>", methods=["DELETE"])
def remove_member(project_id, member_id):
    project_service.remove_member(g.jwt_user_id, project_id, member_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Member removed"}), 200


# ═══════════════════════════════════════════════════════════════
# Bug form options
# ═══════════════════════════════════════════════════════════════
@project_bp.route("/<int:project_id>/bug-form-options", methods=["GET"])
def bug_form_options(project_id):
    """Assignable members and active test cases; ``?testCase=<id>`` echoes a preselection."""
    options = bug_service.get_form_options(g.jwt_user_id, project_id)
    selected = request.args.get("testCase", type=int)
    options["selected_test_case_id"] = (
        selected if any(tc["id"] == selected for tc in options["test_cases"]) else None
    )
    return jsonify(options), 200
