"""
Reporting Blueprint: quality metrics and report downloads.

Endpoints:
  GET /api/v1/reports          - Per-project stats, aggregate, 30-day bug trend
  GET /api/v1/reports/export   - Excel or CSV download of the same report
"""

from datetime import datetime

from flask import Blueprint, Response, g, jsonify, request, send_file

from qatrack.blueprints import register_error_handlers
from qatrack.services.export_service import export_report_csv, export_report_xlsx
from qatrack.services.reporting import build_report

reporting_bp = Blueprint("reporting_bp", __name__, url_prefix="/api/v1/reports")
register_error_handlers(reporting_bp)

EXPORT_FORMATS = ("excel", "csv")


def _project_arg():
    raw = request.args.get("project")
    if raw in (None, ""):
        return None, None
    try:
        return int(raw), None
    except ValueError:
        return None, (jsonify({"error": "project must be an integer"}), 400)


@reporting_bp.route("", methods=["GET"])
def report():
    """GET /api/v1/reports[?project=<id>]: Per-project stats, aggregate and 30-day trend."""
    project_id, err = _project_arg()
    if err:
        return err
    return jsonify(build_report(g.jwt_user_id, project_id)), 200


@reporting_bp.route("/export", methods=["GET"])
def export():
    """GET /api/v1/reports/export?format=excel|csv[&project=<id>]: Download the report."""
    fmt = request.args.get("format", "excel").lower()
    if fmt not in EXPORT_FORMATS:
        return jsonify({"error": f"format must be one of: {', '.join(EXPORT_FORMATS)}"}), 400
    project_id, err = _project_arg()
    if err:
        return err

    data = build_report(g.jwt_user_id, project_id)
    scope = f"project{project_id}" if project_id else "all"
    date_str = datetime.now().strftime("%Y%m%d")

    if fmt == "csv":
        return Response(
            export_report_csv(data),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename=qa_report_{scope}_{date_str}.csv"},
        )

    return send_file(
        export_report_xlsx(data),
        download_name=f"qa_report_{scope}_{date_str}.xlsx",
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
    )
