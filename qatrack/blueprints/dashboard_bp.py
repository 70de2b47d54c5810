"""Dashboard blueprint: personal summary for the signed-in user."""

from flask import Blueprint, g, jsonify

from qatrack.blueprints import register_error_handlers
from qatrack.services.dashboard_service import get_dashboard

dashboard_bp = Blueprint("dashboard_bp", __name__, url_prefix="/api/v1/dashboard")
register_error_handlers(dashboard_bp)


@dashboard_bp.route("", methods=["GET"])
def dashboard():
    return jsonify(get_dashboard(g.current_user)), 200
