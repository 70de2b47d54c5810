"""
QA Track
Testing domain models.

Models:
    - TestCase:         reusable script of ordered steps within a project
    - TestExecution:    one immutable attempt at running a test case
    - TestCaseHistory:  field-level change audit trail for test cases

Architecture ref:
    Project ──1:N──▶ Test Case ──1:N──▶ Test Execution
    Test Case ──1:N──▶ Test Case History
    Test Case ──1:N──▶ Bug (optional origin link, see models/bug.py)
"""

import json
from datetime import datetime, timezone

from qatrack.models import db
from qatrack.utils.helpers import round_half_up


# ── Constants ────────────────────────────────────────────────────────────

TEST_CASE_STATUSES = ("draft", "active", "closed", "deprecated")

PRIORITIES = ("low", "medium", "high", "critical")

EXECUTION_STATUSES = ("passed", "failed", "blocked", "skipped", "not_executed")

# Execution outcome → status pushed onto the parent test case
EXECUTION_CASE_STATUS = {
    "passed": "closed",
    "failed": "active",
}


def completion_percentage(steps_status, total_steps):
    """Percentage of completed steps, rounded half-up; 0 for an empty step list."""
    if not total_steps:
        return 0
    completed = sum(1 for s in (steps_status or []) if _is_completed(s))
    return round_half_up(completed * 100 / total_steps)


def _is_completed(step_status):
    if isinstance(step_status, dict):
        return bool(step_status.get("completed"))
    return bool(step_status)


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASE
# ═════════════════════════════════════════════════════════════════════════════

class TestCase(db.Model):
    """
    Test case in a project's catalog.

    Steps are persisted as a JSON array of {"action", "expected"} objects.
    Order is significant and survives the serialization round-trip.
    """

    __tablename__ = "test_cases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    case_number = db.Column(db.Integer, nullable=False, comment="Monotonic per project")

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    preconditions = db.Column(db.Text, nullable=True)
    steps = db.Column(db.Text, nullable=False, default="[]", comment="JSON [{action, expected}]")
    expected_result = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | active | closed | deprecated",
    )
    priority = db.Column(
        db.String(20), nullable=False, default="medium",
        comment="low | medium | high | critical",
    )
    story_id = db.Column(db.String(100), nullable=True)
    month = db.Column(db.String(20), nullable=True)
    sprint = db.Column(db.String(50), nullable=True)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    steps_version = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Bumped whenever the step list changes",
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    executions = db.relationship(
        "TestExecution", backref="test_case", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="TestExecution.execution_date.desc()",
    )
    history = db.relationship(
        "TestCaseHistory", backref="test_case", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="TestCaseHistory.changed_at.desc()",
    )
    creator = db.relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        db.UniqueConstraint("project_id", "case_number", name="uq_test_case_number"),
    )

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def step_list(self):
        """Deserialized steps; malformed storage yields an empty list."""
        try:
            parsed = json.loads(self.steps or "[]")
        except (TypeError, ValueError):
            return []
        return parsed if isinstance(parsed, list) else []

    @property
    def code(self):
        return f"TC-{self.case_number:04d}" if self.case_number else ""

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "case_number": self.case_number,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "preconditions": self.preconditions,
            "steps": self.step_list,
            "expected_result": self.expected_result,
            "status": self.status,
            "priority": self.priority,
            "story_id": self.story_id,
            "month": self.month,
            "sprint": self.sprint,
            "created_by": self.created_by,
            "creator": self.creator.to_brief() if self.creator else None,
            "steps_version": self.steps_version,
            "version": self.version,
            "execution_count": self.executions.count() if self.id else 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TestCase {self.id}: {self.code} {self.title[:30]}>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST EXECUTION
# ═════════════════════════════════════════════════════════════════════════════

class TestExecution(db.Model):
    """
    Execution record of a test case. Immutable once created.

    steps_status is aligned by index to steps_snapshot, the step list that
    was evaluated. steps_version ties the record to the case revision.
    """

    __tablename__ = "test_executions"

    id = db.Column(db.Integer, primary_key=True)
    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    executed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default="not_executed",
        comment="passed | failed | blocked | skipped | not_executed",
    )
    actual_result = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    steps_status = db.Column(db.JSON, nullable=False, default=list)
    steps_snapshot = db.Column(db.JSON, nullable=False, default=list)
    steps_version = db.Column(db.Integer, nullable=False, default=1)
    execution_date = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    executor = db.relationship("User", foreign_keys=[executed_by])

    @property
    def completion(self):
        return completion_percentage(self.steps_status, len(self.steps_snapshot or []))

    def to_dict(self):
        return {
            "id": self.id,
            "test_case_id": self.test_case_id,
            "project_id": self.project_id,
            "executed_by": self.executed_by,
            "executor": self.executor.to_brief() if self.executor else None,
            "status": self.status,
            "actual_result": self.actual_result,
            "notes": self.notes,
            "steps_status": self.steps_status or [],
            "steps_snapshot": self.steps_snapshot or [],
            "steps_version": self.steps_version,
            "completion": self.completion,
            "execution_date": self.execution_date.isoformat() if self.execution_date else None,
        }

    def __repr__(self):
        return f"<TestExecution {self.id}: case#{self.test_case_id} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASE HISTORY
# ═════════════════════════════════════════════════════════════════════════════

class TestCaseHistory(db.Model):
    """Field-level change audit trail for test cases. Append-only."""

    __tablename__ = "test_case_history"

    id = db.Column(db.Integer, primary_key=True)
    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    field_name = db.Column(db.String(50), nullable=False, comment="Display label of changed field")
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    changed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    changed_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    changer = db.relationship("User", foreign_keys=[changed_by])

    def to_dict(self):
        return {
            "id": self.id,
            "test_case_id": self.test_case_id,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "changer": self.changer.to_brief() if self.changer else None,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<TestCaseHistory {self.id}: case#{self.test_case_id} {self.field_name}>"
