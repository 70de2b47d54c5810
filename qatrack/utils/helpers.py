"""Shared utility functions for blueprints and services.

db_commit_or_error:  single commit point for a request
round_half_up:       percentage rounding used by reports and completion
"""
import logging
import math

from flask import jsonify

from qatrack.models import db

logger = logging.getLogger(__name__)


def round_half_up(value):
    """Round a non-negative number to the nearest integer, halves away from zero.

    Python's round() uses banker's rounding (round(2.5) == 2); percentages
    shown to users round 2.5 up to 3.
    """
    return int(math.floor(value + 0.5))


def parse_int(value):
    """Coerce a query/body value to int; None for empty or invalid input."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure: ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 500 (connection / lock issues)
    Other → 500 (unexpected)

    Services only flush; the entity change and its history rows are
    committed or rolled back together here.
    """
    from sqlalchemy.exc import IntegrityError, OperationalError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({"error": "Duplicate or constraint violation"}), 409
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return jsonify({"error": "Database error"}), 500
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return jsonify({"error": "Database error"}), 500
