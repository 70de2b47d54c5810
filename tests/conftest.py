"""
Shared pytest fixtures for the QA Track test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin_headers / lead_headers / tester_headers: Bearer headers for
      confirmed, signed-in users with those global roles
    - project: project created by the lead, with the tester as member
"""

import pytest

from qatrack import create_app
from qatrack.models import db as _db
from qatrack.models.auth import AuthIdentity

DEFAULT_PASSWORD = "Secret123!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Auth helpers ─────────────────────────────────────────────────────────


def signup_user(client, email, role="tester", full_name=None, password=DEFAULT_PASSWORD):
    res = client.post("/api/v1/auth/signup", json={
        "email": email,
        "password": password,
        "full_name": full_name or email.split("@")[0].title(),
        "role": role,
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def confirm_user(client, email):
    identity = AuthIdentity.query.filter_by(email=email).first()
    res = client.get(f"/api/v1/auth/verify-email?token={identity.confirmation_token}")
    assert res.status_code == 200, res.get_json()


def login_user(client, email, password=DEFAULT_PASSWORD):
    res = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.get_json()
    return res.get_json()


def register_and_login(client, email, role="tester", full_name=None):
    """Sign up, confirm and sign in; returns (Bearer headers, user dict)."""
    signup_user(client, email, role=role, full_name=full_name)
    confirm_user(client, email)
    data = login_user(client, email)
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]


def add_member(client, headers, project_id, email, role="tester"):
    res = client.post(
        f"/api/v1/projects/{project_id}/members",
        json={"email": email, "role": role},
        headers=headers,
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin(client):
    return register_and_login(client, "admin@acme-qa.com", role="admin", full_name="Ada Admin")


@pytest.fixture()
def lead(client):
    return register_and_login(client, "lead@acme-qa.com", role="lead", full_name="Leo Lead")


@pytest.fixture()
def tester(client):
    return register_and_login(client, "tester@acme-qa.com", role="tester", full_name="Tess Tester")


@pytest.fixture()
def lead_headers(lead):
    return lead[0]


@pytest.fixture()
def tester_headers(tester):
    return tester[0]


@pytest.fixture()
def admin_headers(admin):
    return admin[0]


@pytest.fixture()
def project(client, lead_headers, tester):
    """Project owned by the lead, with the tester as a member."""
    res = client.post("/api/v1/projects", json={"name": "Web Shop"}, headers=lead_headers)
    assert res.status_code == 201, res.get_json()
    proj = res.get_json()
    add_member(client, lead_headers, proj["id"], "tester@acme-qa.com", role="tester")
    return proj
