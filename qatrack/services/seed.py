"""
Demo seed: confirmed users, one project, a few test cases and bugs.

Idempotent: existing demo identities and the demo project are reused.
The caller commits.
"""

import json
import logging
import os
from datetime import datetime, timezone

from qatrack.models import db
from qatrack.models.auth import AuthIdentity, ProjectMember
from qatrack.models.bug import Bug
from qatrack.models.project import Project
from qatrack.models.testing import TestCase
from qatrack.services.user_service import ensure_profile
from qatrack.utils.crypto import hash_password

logger = logging.getLogger(__name__)

DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "Demo1234!")
DEMO_PROJECT_NAME = "Demo Web Shop"

DEMO_USERS = [
    # (email, full name, role)
    ("admin@qatrack.local", "Ana Admin", "admin"),
    ("lead@qatrack.local", "Luis Lead", "lead"),
    ("tester@qatrack.local", "Tina Tester", "tester"),
]

DEMO_TEST_CASES = [
    {
        "title": "Login with valid credentials",
        "priority": "high",
        "status": "active",
        "steps": [
            {"action": "Open the login page", "expected": "Login form is shown"},
            {"action": "Enter a valid email and password", "expected": "Fields accept input"},
            {"action": "Submit the form", "expected": "Dashboard is shown"},
        ],
    },
    {
        "title": "Add product to cart",
        "priority": "medium",
        "status": "active",
        "steps": [
            {"action": "Open a product page", "expected": "Product details are shown"},
            {"action": "Click 'Add to cart'", "expected": "Cart counter increments"},
        ],
    },
]

DEMO_BUGS = [
    {"title": "Cart counter does not update on mobile", "priority": "high", "severity": "major"},
    {"title": "Typo on the checkout button", "priority": "low", "severity": "minor"},
]


def _seed_user(email, full_name, role):
    identity = AuthIdentity.query.filter_by(email=email).first()
    if identity is None:
        identity = AuthIdentity(
            email=email,
            password_hash=hash_password(DEMO_PASSWORD),
            email_confirmed_at=datetime.now(timezone.utc),
            user_metadata={"full_name": full_name, "role": role},
        )
        db.session.add(identity)
        db.session.flush()
    return ensure_profile(identity)


def seed_demo() -> dict:
    """Create the demo dataset; returns counts of what was created."""
    created = {"users": 0, "projects": 0, "test_cases": 0, "bugs": 0}

    users = {}
    for email, full_name, role in DEMO_USERS:
        existed = AuthIdentity.query.filter_by(email=email).first() is not None
        users[role] = _seed_user(email, full_name, role)
        created["users"] += 0 if existed else 1

    project = Project.query.filter_by(name=DEMO_PROJECT_NAME).first()
    if project is not None:
        logger.info("Demo project already present (id=%d)", project.id)
        return created

    project = Project(
        name=DEMO_PROJECT_NAME,
        description="Sample project for exploring QA Track",
        status="active",
        created_by=users["admin"].id,
    )
    db.session.add(project)
    db.session.flush()
    created["projects"] = 1

    for role, user in users.items():
        db.session.add(ProjectMember(project_id=project.id, user_id=user.id, role=role))

    for number, data in enumerate(DEMO_TEST_CASES, 1):
        db.session.add(TestCase(
            project_id=project.id,
            case_number=number,
            title=data["title"],
            priority=data["priority"],
            status=data["status"],
            steps=json.dumps(data["steps"], ensure_ascii=False),
            created_by=users["lead"].id,
        ))
        created["test_cases"] += 1

    for number, data in enumerate(DEMO_BUGS, 1):
        db.session.add(Bug(
            project_id=project.id,
            bug_number=number,
            reported_by=users["tester"].id,
            assigned_to=users["lead"].id,
            **data,
        ))
        created["bugs"] += 1

    db.session.flush()
    return created
