"""
Reporting aggregator: per-project and aggregate QA statistics plus a
30-day bug trend.

The reducers (``project_stats``, ``aggregate_stats``, ``bug_trend``) are
pure functions over plain row dicts. ``build_report`` is the thin query
layer that fetches those rows for the projects a user can access.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from qatrack.models import db
from qatrack.models.bug import OPEN_STATUSES, RESOLVED_STATUSES, Bug
from qatrack.models.project import Project
from qatrack.models.testing import TestCase, TestExecution
from qatrack.services.permission_service import get_accessible_project_ids, require_membership
from qatrack.utils.helpers import round_half_up

logger = logging.getLogger(__name__)

TREND_DAYS = 30

STAT_KEYS = (
    "total_bugs",
    "open_bugs",
    "resolved_bugs",
    "total_test_cases",
    "active_test_cases",
    "closed_test_cases",
    "passed_tests",
    "failed_tests",
    "pending_tests",
)


def _pct(numerator: int, denominator: int) -> int:
    return round_half_up(100 * numerator / denominator) if denominator else 0


# ═════════════════════════════════════════════════════════════════════════════
# PURE REDUCERS
# ═════════════════════════════════════════════════════════════════════════════

def project_stats(bugs: list[dict], test_cases: list[dict], executions: list[dict]) -> dict:
    """Counts for one project.

    Each row needs a ``status`` key. success_rate is the share of passed
    executions among passed + failed ones.
    """
    total_tc = len(test_cases)
    closed_tc = sum(1 for tc in test_cases if tc["status"] == "closed")
    passed = sum(1 for e in executions if e["status"] == "passed")
    failed = sum(1 for e in executions if e["status"] == "failed")

    return {
        "total_bugs": len(bugs),
        "open_bugs": sum(1 for b in bugs if b["status"] in OPEN_STATUSES),
        "resolved_bugs": sum(1 for b in bugs if b["status"] in RESOLVED_STATUSES),
        "total_test_cases": total_tc,
        "active_test_cases": total_tc - closed_tc,
        "closed_test_cases": closed_tc,
        "passed_tests": passed,
        "failed_tests": failed,
        "pending_tests": sum(1 for e in executions if e["status"] == "not_executed"),
        "success_rate": _pct(passed, passed + failed),
    }


def aggregate_stats(per_project: list[dict]) -> dict:
    """Sum per-project counts.

    The aggregate success_rate measures closure: resolved bugs plus closed
    test cases over all bugs plus all test cases.
    """
    totals = {key: sum(p.get(key, 0) for p in per_project) for key in STAT_KEYS}
    totals["success_rate"] = _pct(
        totals["resolved_bugs"] + totals["closed_test_cases"],
        totals["total_bugs"] + totals["total_test_cases"],
    )
    totals["projects"] = len(per_project)
    return totals


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def bug_trend(bugs: list[dict], now: datetime | None = None, days: int = TREND_DAYS) -> list[dict]:
    """Daily created/resolved counts for bugs created in the last ``days`` days.

    Rows carry ``status``, ``created_at``, ``resolved_at`` and
    ``updated_at``. Resolved bugs are bucketed by ``resolved_at``, falling
    back to ``updated_at`` for rows that predate the column.

    Returns:
        ``[{"date": "YYYY-MM-DD", "created": n, "resolved": n}]`` by date.
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    since = now - timedelta(days=days)
    buckets = defaultdict(lambda: {"created": 0, "resolved": 0})

    for bug in bugs:
        created_at = _as_utc(bug.get("created_at"))
        if created_at is None or created_at < since:
            continue
        buckets[created_at.date().isoformat()]["created"] += 1

        if bug["status"] in RESOLVED_STATUSES:
            resolved_on = _as_utc(bug.get("resolved_at")) or _as_utc(bug.get("updated_at"))
            if resolved_on is not None:
                buckets[resolved_on.date().isoformat()]["resolved"] += 1

    return [{"date": day, **counts} for day, counts in sorted(buckets.items())]


# ═════════════════════════════════════════════════════════════════════════════
# QUERY LAYER
# ═════════════════════════════════════════════════════════════════════════════

def _bug_rows(project_ids: list[int]) -> list[dict]:
    rows = (
        db.session.query(
            Bug.project_id, Bug.status, Bug.created_at, Bug.resolved_at, Bug.updated_at,
        )
        .filter(Bug.project_id.in_(project_ids))
        .all()
    )
    return [r._asdict() for r in rows]


def _status_rows(model, project_ids: list[int]) -> list[dict]:
    rows = (
        db.session.query(model.project_id, model.status)
        .filter(model.project_id.in_(project_ids))
        .all()
    )
    return [r._asdict() for r in rows]


def build_report(user_id: int, project_id: int | None = None, now: datetime | None = None) -> dict:
    """Statistics for every accessible project, or just ``project_id``.

    Returns:
        ``{"projects": [...], "aggregate": {...}, "trend": [...]}``
    """
    if project_id is not None:
        require_membership(user_id, project_id)
        project_ids = [project_id]
    else:
        project_ids = get_accessible_project_ids(user_id)

    if not project_ids:
        return {"projects": [], "aggregate": aggregate_stats([]), "trend": []}

    projects = (
        Project.query.filter(Project.id.in_(project_ids))
        .order_by(Project.name, Project.id)
        .all()
    )
    bugs = _bug_rows(project_ids)
    test_cases = _status_rows(TestCase, project_ids)
    executions = _status_rows(TestExecution, project_ids)

    per_project = []
    for project in projects:
        stats = project_stats(
            [b for b in bugs if b["project_id"] == project.id],
            [tc for tc in test_cases if tc["project_id"] == project.id],
            [e for e in executions if e["project_id"] == project.id],
        )
        per_project.append({"project_id": project.id, "project_name": project.name, **stats})

    logger.debug("Report built for user %d over %d project(s)", user_id, len(per_project))
    return {
        "projects": per_project,
        "aggregate": aggregate_stats(per_project),
        "trend": bug_trend(bugs, now=now),
    }
