"""Lookup blueprint: enumerations used by client forms and filters."""

from flask import Blueprint, jsonify

from qatrack.models.auth import MEMBER_ROLES, USER_ROLES
from qatrack.models.bug import BUG_PRIORITIES, BUG_SEVERITIES, BUG_STATUSES, VALID_TRANSITIONS
from qatrack.models.project import PROJECT_STATUSES
from qatrack.models.testing import EXECUTION_STATUSES, PRIORITIES, TEST_CASE_STATUSES

lookup_bp = Blueprint("lookup_bp", __name__, url_prefix="/api/v1/lookups")


@lookup_bp.route("/priorities", methods=["GET"])
def priorities():
    """Bug priority values, lowest first."""
    return jsonify({"items": list(BUG_PRIORITIES)}), 200


@lookup_bp.route("/enums", methods=["GET"])
def enums():
    return jsonify({
        "bug_statuses": list(BUG_STATUSES),
        "bug_priorities": list(BUG_PRIORITIES),
        "bug_severities": list(BUG_SEVERITIES),
        "bug_transitions": VALID_TRANSITIONS,
        "test_case_statuses": list(TEST_CASE_STATUSES),
        "test_case_priorities": list(PRIORITIES),
        "execution_statuses": list(EXECUTION_STATUSES),
        "project_statuses": list(PROJECT_STATUSES),
        "user_roles": list(USER_ROLES),
        "member_roles": list(MEMBER_ROLES),
    }), 200
