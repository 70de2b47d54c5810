"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in qatrack/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from qatrack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Credential endpoints: brute-force protection
AUTH_LIMIT = "20/minute"
# Write-heavy CRUD blueprints
WRITE_LIMIT = "120/minute"
# Read-focused reporting
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Auth endpoints:   20/minute
        - CRUD endpoints:   120/minute
        - Reporting:        200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    for bp_name in ("project_bp", "test_case_bp", "bug_bp", "admin_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("reporting_bp", "dashboard_bp", "lookup_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured (auth: %s, write: %s, read: %s)",
        AUTH_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
