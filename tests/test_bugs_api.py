"""
Bug tracking API tests.

Test blocks:
  1. Report a bug (defaults, validation, project scoping)
  2. Status workflow (transition guard, resolved_at, reopen_count)
  3. Update permissions and assignee audit labels
  4. Comments, filters, optimistic version
"""

import pytest
from sqlalchemy.exc import IntegrityError

from qatrack.models import db as _db
from qatrack.models.bug import Bug, BugHistory
from tests.conftest import register_and_login


def _report(client, headers, project_id, **overrides):
    payload = {"project_id": project_id, "title": "Cart total is wrong"}
    payload.update(overrides)
    res = client.post("/api/v1/bugs", json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _update(client, headers, bug_id, **body):
    return client.put(f"/api/v1/bugs/{bug_id}", json=body, headers=headers)


@pytest.fixture()
def bug(client, project, tester_headers):
    return _report(client, tester_headers, project["id"])


class TestReportBug:
    def test_defaults(self, client, project, tester):
        headers, user = tester
        data = _report(client, headers, project["id"])
        assert data["code"] == "BUG-0001"
        assert data["status"] == "open"
        assert data["priority"] == "medium"
        assert data["severity"] == "major"
        assert data["reported_by"] == user["id"]
        assert data["assigned_to"] is None
        assert data["resolved_at"] is None
        assert data["reopen_count"] == 0
        assert data["version"] == 1

    def test_linked_test_case_and_assignee(self, client, project, lead_headers, tester):
        _headers, tester_user = tester
        tc = client.post("/api/v1/test-cases", json={
            "project_id": project["id"], "title": "Checkout",
        }, headers=lead_headers).get_json()

        data = _report(client, lead_headers, project["id"],
                       test_case_id=tc["id"], assigned_to=tester_user["id"],
                       priority="critical", severity="blocker")
        assert data["test_case"]["code"] == "TC-0001"
        assert data["assignee"]["id"] == tester_user["id"]
        assert data["priority"] == "critical"

    def test_invalid_priority(self, client, project, tester_headers):
        res = client.post("/api/v1/bugs", json={
            "project_id": project["id"], "title": "x", "priority": "urgent",
        }, headers=tester_headers)
        assert res.status_code == 422

    def test_title_required(self, client, project, tester_headers):
        res = client.post("/api/v1/bugs", json={"project_id": project["id"]},
                          headers=tester_headers)
        assert res.status_code == 400

    def test_non_object_body(self, client, project, tester_headers):
        res = client.post("/api/v1/bugs", json=[1, 2], headers=tester_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Request body must be a JSON object"

    def test_non_string_title_is_coerced(self, client, project, tester_headers):
        data = _report(client, tester_headers, project["id"], title=5)
        assert data["title"] == "5"

    def test_test_case_from_other_project(self, client, project, lead_headers):
        other = client.post("/api/v1/projects", json={"name": "Other"},
                            headers=lead_headers).get_json()
        tc = client.post("/api/v1/test-cases", json={
            "project_id": other["id"], "title": "Elsewhere",
        }, headers=lead_headers).get_json()

        res = client.post("/api/v1/bugs", json={
            "project_id": project["id"], "title": "x", "test_case_id": tc["id"],
        }, headers=lead_headers)
        assert res.status_code == 422

    def test_assignee_must_be_member(self, client, project, lead_headers):
        _h, outsider = register_and_login(client, "outsider@acme-qa.com")
        res = client.post("/api/v1/bugs", json={
            "project_id": project["id"], "title": "x", "assigned_to": outsider["id"],
        }, headers=lead_headers)
        assert res.status_code == 422
        assert Bug.query.count() == 0

    def test_non_member_cannot_report(self, client, project):
        headers, _ = register_and_login(client, "outsider@acme-qa.com")
        res = client.post("/api/v1/bugs", json={
            "project_id": project["id"], "title": "x",
        }, headers=headers)
        assert res.status_code == 403


class TestStatusWorkflow:
    def test_resolve_stamps_resolved_at_and_history(self, client, bug, lead):
        headers, user = lead
        res = _update(client, headers, bug["id"], status="resolved")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "resolved"
        assert data["resolved_at"] is not None
        assert data["version"] == 2

        row = BugHistory.query.filter_by(bug_id=bug["id"]).one()
        assert (row.field_name, row.old_value, row.new_value) == ("Estado", "open", "resolved")
        assert row.changed_by == user["id"]

    def test_invalid_transition_lists_allowed(self, client, bug, lead_headers):
        res = _update(client, lead_headers, bug["id"], status="reopened")
        assert res.status_code == 422
        body = res.get_json()
        assert body["allowed"] == ["in_progress", "resolved", "closed"]
        assert "open → reopened" in body["error"]
        assert BugHistory.query.filter_by(bug_id=bug["id"]).count() == 0

    def test_unknown_status(self, client, bug, lead_headers):
        res = _update(client, lead_headers, bug["id"], status="done")
        assert res.status_code == 422

    def test_reopen_clears_resolved_at(self, client, bug, lead_headers):
        _update(client, lead_headers, bug["id"], status="resolved")
        data = _update(client, lead_headers, bug["id"], status="reopened").get_json()
        assert data["status"] == "reopened"
        assert data["resolved_at"] is None
        assert data["reopen_count"] == 1

    def test_close_without_resolving_stamps_resolved_at(self, client, bug, lead_headers):
        data = _update(client, lead_headers, bug["id"], status="closed").get_json()
        assert data["resolved_at"] is not None

    def test_close_keeps_original_resolution_time(self, client, bug, lead_headers):
        resolved = _update(client, lead_headers, bug["id"], status="resolved").get_json()
        closed = _update(client, lead_headers, bug["id"], status="closed").get_json()
        assert closed["resolved_at"] == resolved["resolved_at"]

    def test_closed_cannot_go_back_to_open(self, client, bug, lead_headers):
        _update(client, lead_headers, bug["id"], status="closed")
        res = _update(client, lead_headers, bug["id"], status="open")
        assert res.status_code == 422
        assert res.get_json()["allowed"] == ["reopened"]

    def test_same_status_is_a_noop(self, client, bug, lead_headers):
        data = _update(client, lead_headers, bug["id"], status="open").get_json()
        assert data["version"] == 1
        assert BugHistory.query.filter_by(bug_id=bug["id"]).count() == 0

    def test_failed_commit_discards_update_and_history(self, client, bug, lead_headers, monkeypatch):
        def _failing_commit():
            raise IntegrityError("UPDATE bugs", {}, Exception("constraint failed"))

        monkeypatch.setattr(_db.session, "commit", _failing_commit)
        res = _update(client, lead_headers, bug["id"], status="resolved", priority="high")
        monkeypatch.undo()

        assert res.status_code == 409
        stored = _db.session.get(Bug, bug["id"])
        assert stored.status == "open"
        assert stored.priority == "medium"
        assert stored.version == 1
        assert BugHistory.query.filter_by(bug_id=bug["id"]).count() == 0

    def test_detail_exposes_allowed_transitions(self, client, bug, lead_headers):
        data = client.get(f"/api/v1/bugs/{bug['id']}", headers=lead_headers).get_json()
        assert data["allowed_transitions"] == ["in_progress", "resolved", "closed"]
        assert data["can_manage"] is True


class TestUpdatePermissions:
    def test_reporter_tester_cannot_update(self, client, bug, tester_headers):
        res = _update(client, tester_headers, bug["id"], priority="high")
        assert res.status_code == 403

        data = client.get(f"/api/v1/bugs/{bug['id']}", headers=tester_headers).get_json()
        assert data["can_manage"] is False

    def test_assignee_can_update(self, client, project, lead_headers, tester):
        tester_headers, tester_user = tester
        bug = _report(client, lead_headers, project["id"], assigned_to=tester_user["id"])
        res = _update(client, tester_headers, bug["id"], status="in_progress")
        assert res.status_code == 200

    def test_assignee_history_uses_display_names(self, client, bug, lead_headers, tester):
        _h, tester_user = tester
        _update(client, lead_headers, bug["id"], assigned_to=tester_user["id"])

        row = BugHistory.query.filter_by(bug_id=bug["id"]).one()
        assert row.field_name == "Asignado a"
        assert row.old_value == "Sin asignar"
        assert row.new_value == "Tess Tester"

        _update(client, lead_headers, bug["id"], assigned_to=None)
        latest = client.get(f"/api/v1/bugs/{bug['id']}/history", headers=lead_headers).get_json()
        assert latest["items"][0]["new_value"] == "Sin asignar"

    def test_one_row_per_changed_field(self, client, bug, lead_headers):
        _update(client, lead_headers, bug["id"],
                status="in_progress", priority="high", severity="critical",
                description="Only on Safari")
        labels = [h.field_name for h in BugHistory.query.filter_by(bug_id=bug["id"]).all()]
        assert sorted(labels) == ["Estado", "Prioridad", "Severidad"]

    def test_untracked_change_bumps_version_without_history(self, client, bug, lead_headers):
        data = _update(client, lead_headers, bug["id"], title="Cart total off by one").get_json()
        assert data["version"] == 2
        assert BugHistory.query.filter_by(bug_id=bug["id"]).count() == 0

    def test_stale_version_conflicts(self, client, bug, lead_headers):
        _update(client, lead_headers, bug["id"], priority="high", version=1)
        res = _update(client, lead_headers, bug["id"], priority="low", version=1)
        assert res.status_code == 409
        assert _db.session.get(Bug, bug["id"]).priority == "high"

    def test_patch_alias(self, client, bug, lead_headers):
        res = client.patch(f"/api/v1/bugs/{bug['id']}", json={"severity": "minor"},
                           headers=lead_headers)
        assert res.status_code == 200

    def test_empty_body(self, client, bug, lead_headers):
        assert _update(client, lead_headers, bug["id"]).status_code == 400

    def test_unknown_bug(self, client, lead_headers):
        assert _update(client, lead_headers, 9999, status="closed").status_code == 404


class TestComments:
    def test_any_member_can_comment(self, client, bug, tester, lead_headers):
        headers, user = tester
        res = client.post(f"/api/v1/bugs/{bug['id']}/comments",
                          json={"comment": "Still happens on v2.3"}, headers=headers)
        assert res.status_code == 201
        assert res.get_json()["created_by"] == user["id"]

        client.post(f"/api/v1/bugs/{bug['id']}/comments",
                    json={"comment": "Looking into it"}, headers=lead_headers)
        body = client.get(f"/api/v1/bugs/{bug['id']}/comments", headers=headers).get_json()
        assert [c["comment"] for c in body["items"]] == ["Still happens on v2.3", "Looking into it"]

    def test_empty_comment(self, client, bug, tester_headers):
        res = client.post(f"/api/v1/bugs/{bug['id']}/comments",
                          json={"comment": "   "}, headers=tester_headers)
        assert res.status_code == 400

    def test_non_string_comment_is_coerced(self, client, bug, tester_headers):
        res = client.post(f"/api/v1/bugs/{bug['id']}/comments",
                          json={"comment": 42}, headers=tester_headers)
        assert res.status_code == 201
        assert res.get_json()["comment"] == "42"

    def test_non_member_cannot_comment(self, client, bug):
        headers, _ = register_and_login(client, "outsider@acme-qa.com")
        res = client.post(f"/api/v1/bugs/{bug['id']}/comments",
                          json={"comment": "hi"}, headers=headers)
        assert res.status_code == 403


class TestListBugs:
    def test_filters(self, client, project, lead_headers, tester):
        _h, tester_user = tester
        pid = project["id"]
        _report(client, lead_headers, pid, title="Crash on login", priority="critical")
        _report(client, lead_headers, pid, title="Slow search", assigned_to=tester_user["id"])
        third = _report(client, lead_headers, pid, title="Typo in footer", severity="minor")
        _update(client, lead_headers, third["id"], status="resolved")

        def titles(query):
            body = client.get(f"/api/v1/bugs?project={pid}&{query}", headers=lead_headers).get_json()
            return [b["title"] for b in body["items"]]

        assert titles("priority=critical") == ["Crash on login"]
        assert titles(f"assigned_to={tester_user['id']}") == ["Slow search"]
        assert titles("status=resolved") == ["Typo in footer"]
        assert titles("severity=minor") == ["Typo in footer"]
        assert titles("search=login") == ["Crash on login"]

    def test_newest_first_and_default_project(self, client, project, lead_headers):
        first = _report(client, lead_headers, project["id"], title="First")
        second = _report(client, lead_headers, project["id"], title="Second")
        body = client.get("/api/v1/bugs", headers=lead_headers).get_json()
        assert body["project_id"] == project["id"]
        assert [b["id"] for b in body["items"]] == [second["id"], first["id"]]

    def test_no_projects_redirects(self, client):
        headers, _ = register_and_login(client, "lonely@acme-qa.com")
        body = client.get("/api/v1/bugs", headers=headers).get_json()
        assert body["redirect"] == "/projects"
