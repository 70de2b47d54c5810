"""
Dashboard, admin user management, lookups, health and request guards.
"""

from qatrack.models.auth import AuthIdentity, ProjectMember
from qatrack.models.bug import Bug
from qatrack.models.project import Project
from qatrack.services.seed import DEMO_PASSWORD, DEMO_PROJECT_NAME, seed_demo


class TestDashboard:
    def _seed(self, client, project, lead_headers, tester):
        tester_headers, tester_user = tester
        pid = project["id"]
        for title in ("Login loops", "Broken image"):
            client.post("/api/v1/bugs", json={"project_id": pid, "title": title},
                        headers=tester_headers)
        client.post("/api/v1/bugs", json={
            "project_id": pid, "title": "Assigned open", "assigned_to": tester_user["id"],
        }, headers=lead_headers)
        done = client.post("/api/v1/bugs", json={
            "project_id": pid, "title": "Assigned done", "assigned_to": tester_user["id"],
        }, headers=lead_headers).get_json()
        client.put(f"/api/v1/bugs/{done['id']}", json={"status": "resolved"}, headers=lead_headers)

    def test_counts_and_recent(self, client, project, lead_headers, tester):
        self._seed(client, project, lead_headers, tester)
        tester_headers, tester_user = tester

        res = client.get("/api/v1/dashboard", headers=tester_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["profile"]["id"] == tester_user["id"]
        assert data["projects_count"] == 1
        assert data["bugs_count"] == 2
        assert data["assigned_open_bugs"] == 1
        assert [b["title"] for b in data["recent_bugs"]] == [
            "Assigned done", "Assigned open", "Broken image", "Login loops",
        ]

    def test_recent_bugs_limited_to_member_projects(self, client, project, lead_headers, tester):
        self._seed(client, project, lead_headers, tester)
        tester_headers, tester_user = tester
        member = ProjectMember.query.filter_by(
            project_id=project["id"], user_id=tester_user["id"],
        ).one()
        client.delete(f"/api/v1/projects/{project['id']}/members/{member.id}",
                      headers=lead_headers)

        data = client.get("/api/v1/dashboard", headers=tester_headers).get_json()
        assert data["projects_count"] == 0
        assert data["recent_bugs"] == []
        assert data["bugs_count"] == 2

    def test_requires_auth(self, client):
        assert client.get("/api/v1/dashboard").status_code == 401


class TestAdminUsers:
    def test_list_users(self, client, admin_headers, lead, tester):
        res = client.get("/api/v1/admin/users", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 3

        res = client.get("/api/v1/admin/users?role=lead", headers=admin_headers)
        assert [u["email"] for u in res.get_json()["items"]] == ["lead@acme-qa.com"]

    def test_tester_is_forbidden(self, client, tester_headers):
        res = client.get("/api/v1/admin/users", headers=tester_headers)
        assert res.status_code == 403
        assert res.get_json()["required"] == ["admin"]

    def test_user_detail_with_memberships(self, client, admin_headers, project, tester):
        _h, tester_user = tester
        res = client.get(f"/api/v1/admin/users/{tester_user['id']}", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["memberships"] == [
            {"project_id": project["id"], "project_name": "Web Shop", "role": "tester"},
        ]

    def test_promote_user(self, client, admin_headers, tester):
        _h, tester_user = tester
        res = client.put(f"/api/v1/admin/users/{tester_user['id']}",
                         json={"role": "lead"}, headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["role"] == "lead"

    def test_invalid_role(self, client, admin_headers, tester):
        _h, tester_user = tester
        res = client.put(f"/api/v1/admin/users/{tester_user['id']}",
                         json={"role": "superuser"}, headers=admin_headers)
        assert res.status_code == 400

    def test_deactivation_revokes_access(self, client, admin_headers, tester):
        tester_headers, tester_user = tester
        res = client.put(f"/api/v1/admin/users/{tester_user['id']}",
                         json={"is_active": False}, headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

        res = client.get("/api/v1/auth/me", headers=tester_headers)
        assert res.status_code == 401

    def test_admin_cannot_demote_self(self, client, admin):
        headers, user = admin
        res = client.put(f"/api/v1/admin/users/{user['id']}",
                         json={"role": "tester"}, headers=headers)
        assert res.status_code == 422

    def test_ignores_other_fields(self, client, admin_headers, tester):
        _h, tester_user = tester
        res = client.put(f"/api/v1/admin/users/{tester_user['id']}",
                         json={"email": "hacked@acme-qa.com"}, headers=admin_headers)
        assert res.status_code == 400

    def test_unknown_user(self, client, admin_headers):
        res = client.put("/api/v1/admin/users/9999", json={"role": "lead"}, headers=admin_headers)
        assert res.status_code == 404


class TestLookups:
    def test_priorities(self, client, tester_headers):
        res = client.get("/api/v1/lookups/priorities", headers=tester_headers)
        assert res.status_code == 200
        assert res.get_json()["items"] == ["low", "medium", "high", "critical"]

    def test_enums(self, client, tester_headers):
        data = client.get("/api/v1/lookups/enums", headers=tester_headers).get_json()
        assert data["bug_transitions"]["closed"] == ["reopened"]
        assert "not_executed" in data["execution_statuses"]

    def test_requires_auth(self, client):
        assert client.get("/api/v1/lookups/priorities").status_code == 401


class TestPlatform:
    def test_live_reports_database(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_unknown_route(self, client, tester_headers):
        res = client.get("/api/v1/nothing-here", headers=tester_headers)
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nothing-here"

    def test_non_json_body_rejected(self, client, lead_headers):
        res = client.post("/api/v1/projects", data="name=x",
                          content_type="text/plain", headers=lead_headers)
        assert res.status_code == 415

    def test_request_id_is_echoed(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers


class TestSeedDemo:
    def test_seed_is_idempotent(self, session):
        created = seed_demo()
        assert created == {"users": 3, "projects": 1, "test_cases": 2, "bugs": 2}

        project = Project.query.filter_by(name=DEMO_PROJECT_NAME).one()
        assert project.members.count() == 3
        assert Bug.query.filter_by(project_id=project.id).count() == 2
        assert all(i.is_confirmed for i in AuthIdentity.query.all())

        assert seed_demo() == {"users": 0, "projects": 0, "test_cases": 0, "bugs": 0}

    def test_seeded_users_can_log_in(self, client):
        seed_demo()
        res = client.post("/api/v1/auth/login", json={
            "email": "lead@qatrack.local", "password": DEMO_PASSWORD,
        })
        assert res.status_code == 200
        assert res.get_json()["user"]["role"] == "lead"
