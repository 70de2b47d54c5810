"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - dependency status (database)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from qatrack.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe: always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with database latency."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Rate-limit storage ───────────────────────────────────────────
    storage = current_app.config.get("REDIS_URL", "memory://")
    checks["rate_limit_storage"] = {"backend": storage.split("://", 1)[0]}

    checks["app"] = {
        "name": "QA Track",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status = "ok" if overall else "degraded"
    return jsonify({"status": status, "checks": checks}), 200 if overall else 503
