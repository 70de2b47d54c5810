"""
Reporting tests.

  1. Pure reducers: project_stats, aggregate_stats, bug_trend
  2. /api/v1/reports and the Excel/CSV export
"""

import csv
import io
from datetime import datetime, timezone

from openpyxl import load_workbook

from qatrack.services.reporting import STAT_KEYS, aggregate_stats, bug_trend, project_stats
from tests.conftest import register_and_login

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


def _rows(*statuses):
    return [{"status": s} for s in statuses]


class TestProjectStats:
    def test_counts(self):
        stats = project_stats(
            _rows("open", "in_progress", "resolved", "closed", "reopened"),
            _rows("active", "closed", "draft"),
            _rows("passed", "passed", "failed", "not_executed", "blocked"),
        )
        assert stats == {
            "total_bugs": 5,
            "open_bugs": 2,
            "resolved_bugs": 2,
            "total_test_cases": 3,
            "active_test_cases": 2,
            "closed_test_cases": 1,
            "passed_tests": 2,
            "failed_tests": 1,
            "pending_tests": 1,
            "success_rate": 67,
        }

    def test_no_decided_executions_is_zero(self):
        stats = project_stats([], [], _rows("blocked", "skipped"))
        assert stats["success_rate"] == 0
        assert stats["pending_tests"] == 0


class TestAggregateStats:
    def test_sums_and_closure_rate(self):
        first = project_stats(_rows("resolved", "open"), _rows("closed", "active"), _rows("passed"))
        second = project_stats(_rows("closed"), _rows("active", "active"), _rows("failed"))

        agg = aggregate_stats([first, second])
        for key in STAT_KEYS:
            assert agg[key] == first[key] + second[key]
        # (2 resolved bugs + 1 closed case) / (3 bugs + 4 cases) = 42.86 %
        assert agg["success_rate"] == 43
        assert agg["projects"] == 2

    def test_empty(self):
        agg = aggregate_stats([])
        assert agg["success_rate"] == 0
        assert agg["total_bugs"] == 0
        assert agg["projects"] == 0


class TestBugTrend:
    def test_window_buckets_and_order(self):
        bugs = [
            {"status": "open", "created_at": datetime(2026, 3, 30, 9, tzinfo=timezone.utc),
             "resolved_at": None, "updated_at": None},
            {"status": "resolved", "created_at": datetime(2026, 3, 29, 9, tzinfo=timezone.utc),
             "resolved_at": datetime(2026, 3, 30, 15, tzinfo=timezone.utc), "updated_at": None},
            # Outside the 30-day window
            {"status": "closed", "created_at": datetime(2026, 1, 2, tzinfo=timezone.utc),
             "resolved_at": datetime(2026, 3, 30, tzinfo=timezone.utc), "updated_at": None},
        ]
        assert bug_trend(bugs, now=NOW) == [
            {"date": "2026-03-29", "created": 1, "resolved": 0},
            {"date": "2026-03-30", "created": 1, "resolved": 1},
        ]

    def test_resolution_falls_back_to_updated_at(self):
        bugs = [{
            "status": "closed",
            "created_at": datetime(2026, 3, 20, 8),  # naive, as SQLite returns it
            "resolved_at": None,
            "updated_at": datetime(2026, 3, 25, 8),
        }]
        assert bug_trend(bugs, now=NOW) == [
            {"date": "2026-03-20", "created": 1, "resolved": 0},
            {"date": "2026-03-25", "created": 0, "resolved": 1},
        ]

    def test_reopened_bug_is_not_counted_as_resolved(self):
        bugs = [{
            "status": "reopened",
            "created_at": datetime(2026, 3, 28, tzinfo=timezone.utc),
            "resolved_at": None,
            "updated_at": datetime(2026, 3, 29, tzinfo=timezone.utc),
        }]
        assert bug_trend(bugs, now=NOW) == [{"date": "2026-03-28", "created": 1, "resolved": 0}]


# ── API ──────────────────────────────────────────────────────────────────


def _seed_activity(client, headers, project_id):
    """One closed case (passed run), one failed run, one resolved and one open bug."""
    steps = [{"action": "Open cart", "expected": "Cart shown"}]
    tc = client.post("/api/v1/test-cases", json={
        "project_id": project_id, "title": "Cart", "status": "active", "steps": steps,
    }, headers=headers).get_json()
    other = client.post("/api/v1/test-cases", json={
        "project_id": project_id, "title": "Search", "status": "active",
    }, headers=headers).get_json()
    client.post(f"/api/v1/test-cases/{tc['id']}/executions",
                json={"status": "passed", "steps_status": [True]}, headers=headers)
    client.post(f"/api/v1/test-cases/{other['id']}/executions",
                json={"status": "failed"}, headers=headers)

    bug = client.post("/api/v1/bugs", json={
        "project_id": project_id, "title": "Broken cart",
    }, headers=headers).get_json()
    client.put(f"/api/v1/bugs/{bug['id']}", json={"status": "resolved"}, headers=headers)
    client.post("/api/v1/bugs", json={"project_id": project_id, "title": "Slow search"},
                headers=headers)


class TestReportApi:
    def test_report_for_project(self, client, project, lead_headers):
        _seed_activity(client, lead_headers, project["id"])

        res = client.get(f"/api/v1/reports?project={project['id']}", headers=lead_headers)
        assert res.status_code == 200
        body = res.get_json()
        stats = body["projects"][0]
        assert stats["project_name"] == "Web Shop"
        assert stats["total_bugs"] == 2
        assert stats["open_bugs"] == 1
        assert stats["resolved_bugs"] == 1
        assert stats["closed_test_cases"] == 1
        assert stats["active_test_cases"] == 1
        assert stats["passed_tests"] == 1
        assert stats["failed_tests"] == 1
        assert stats["success_rate"] == 50
        # (1 resolved bug + 1 closed case) / (2 bugs + 2 cases)
        assert body["aggregate"]["success_rate"] == 50
        assert sum(p["created"] for p in body["trend"]) == 2
        assert sum(p["resolved"] for p in body["trend"]) == 1

    def test_report_across_projects(self, client, project, lead_headers):
        other = client.post("/api/v1/projects", json={"name": "Admin Portal"},
                            headers=lead_headers).get_json()
        client.post("/api/v1/bugs", json={"project_id": other["id"], "title": "x"},
                    headers=lead_headers)

        body = client.get("/api/v1/reports", headers=lead_headers).get_json()
        assert [p["project_name"] for p in body["projects"]] == ["Admin Portal", "Web Shop"]
        assert body["aggregate"]["projects"] == 2
        assert body["aggregate"]["total_bugs"] == 1

    def test_user_without_projects(self, client):
        headers, _ = register_and_login(client, "lonely@acme-qa.com")
        body = client.get("/api/v1/reports", headers=headers).get_json()
        assert body["projects"] == []
        assert body["trend"] == []
        assert body["aggregate"]["success_rate"] == 0

    def test_non_member_project(self, client, project):
        headers, _ = register_and_login(client, "outsider@acme-qa.com")
        res = client.get(f"/api/v1/reports?project={project['id']}", headers=headers)
        assert res.status_code == 403

    def test_unknown_project(self, client, lead_headers):
        res = client.get("/api/v1/reports?project=9999", headers=lead_headers)
        assert res.status_code == 404


class TestExport:
    def test_csv(self, client, project, lead_headers):
        _seed_activity(client, lead_headers, project["id"])
        res = client.get(f"/api/v1/reports/export?format=csv&project={project['id']}",
                         headers=lead_headers)
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        assert f"qa_report_project{project['id']}_" in res.headers["Content-Disposition"]

        rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
        assert rows[0][0] == "project_name"
        assert rows[1][0] == "Web Shop"
        assert rows[-1][0] == "TOTAL"

    def test_excel(self, client, project, lead_headers):
        _seed_activity(client, lead_headers, project["id"])
        res = client.get("/api/v1/reports/export?format=excel", headers=lead_headers)
        assert res.status_code == 200
        assert "qa_report_all_" in res.headers["Content-Disposition"]

        wb = load_workbook(io.BytesIO(res.data))
        assert wb.sheetnames == ["Summary", "Projects", "Bug Trend"]
        assert wb["Projects"].cell(row=2, column=1).value == "Web Shop"
        assert wb["Summary"]["B4"].value == "50%"

    def test_invalid_format(self, client, lead_headers):
        res = client.get("/api/v1/reports/export?format=pdf", headers=lead_headers)
        assert res.status_code == 400
