"""
Admin Blueprint: global user management.

Endpoints (global admin only):
  GET /api/v1/admin/users        - List users (?role=, ?is_active=true|false)
  GET /api/v1/admin/users/<id>   - User detail with memberships
  PUT /api/v1/admin/users/<id>   - Change role / is_active
"""

import logging

from flask import Blueprint, g, jsonify, request

from qatrack.blueprints import json_body, paginate_query, register_error_handlers
from qatrack.middleware.permission_required import require_role
from qatrack.models import db
from qatrack.services.user_service import (
    UserServiceError,
    admin_update_user,
    get_user_by_id,
    list_users,
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)


def _parse_bool(raw):
    if raw is None or raw == "":
        return None
    return str(raw).lower() in ("1", "true", "yes")


@admin_bp.route("/users", methods=["GET"])
@require_role("admin")
def admin_list_users():
    query = list_users(
        role=request.args.get("role"),
        is_active=_parse_bool(request.args.get("is_active")),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [u.to_dict() for u in items], "total": total}), 200


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@require_role("admin")
def admin_get_user(user_id):
    user = get_user_by_id(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404
    d = user.to_dict()
    d["memberships"] = [
        {"project_id": m.project_id, "project_name": m.project.name, "role": m.role}
        for m in user.project_memberships.all()
    ]
    return jsonify(d), 200


@admin_bp.route("/users/<int:user_id>", methods=["PUT"])
@require_role("admin")
def admin_update(user_id):
    """Body: { "role": "lead", "is_active": false }"""
    data = json_body()
    data = {k: v for k, v in data.items() if k in ("role", "is_active")}
    if not data:
        return jsonify({"error": "role or is_active is required"}), 400

    try:
        user = admin_update_user(user_id, data, acting_user_id=g.jwt_user_id)
    except UserServiceError as e:
        db.session.rollback()
        return jsonify({"error": e.message}), e.status_code
    return jsonify(user.to_dict()), 200
