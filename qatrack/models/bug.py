"""
QA Track
Bug domain models.

Models:
    - Bug:          defect report, optionally linked to the test case that revealed it
    - BugComment:   append-only discussion on a bug
    - BugHistory:   field-level change audit trail for bugs

Lifecycle:
    open ──▶ in_progress ──▶ resolved ──▶ closed
      │          │              │           │
      └──────────┴──▶ closed    └──▶ reopened ◀──┘
    reopened ──▶ in_progress | resolved | closed
"""

from datetime import datetime, timezone

from qatrack.models import db


# ── Constants ────────────────────────────────────────────────────────────

BUG_STATUSES = ("open", "in_progress", "resolved", "closed", "reopened")

BUG_PRIORITIES = ("low", "medium", "high", "critical")

BUG_SEVERITIES = ("minor", "major", "critical", "blocker")

OPEN_STATUSES = ("open", "in_progress")
RESOLVED_STATUSES = ("resolved", "closed")

# ── Status transition guard ──────────────────────────────────────────────
VALID_TRANSITIONS = {
    "open":        ["in_progress", "resolved", "closed"],
    "in_progress": ["open", "resolved", "closed"],
    "resolved":    ["closed", "reopened"],
    "closed":      ["reopened"],
    "reopened":    ["in_progress", "resolved", "closed"],
}


def validate_bug_transition(old_status, new_status):
    """Return True if transition is valid, False otherwise."""
    allowed = VALID_TRANSITIONS.get(old_status, [])
    return new_status in allowed


# ═════════════════════════════════════════════════════════════════════════════
# BUG
# ═════════════════════════════════════════════════════════════════════════════

class Bug(db.Model):
    """
    Bug raised against a project.

    resolved_at is stamped on entry into "resolved" (or "closed" when never
    resolved) and cleared on reopen.
    """

    __tablename__ = "bugs"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    bug_number = db.Column(db.Integer, nullable=False, comment="Monotonic per project")
    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="SET NULL"),
        nullable=True, index=True, comment="Test case that revealed this bug",
    )

    # ── Identification
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    steps_to_reproduce = db.Column(db.Text, nullable=True)
    expected_behavior = db.Column(db.Text, nullable=True)
    actual_behavior = db.Column(db.Text, nullable=True)

    # ── Classification
    priority = db.Column(
        db.String(20), nullable=False, default="medium",
        comment="low | medium | high | critical",
    )
    severity = db.Column(
        db.String(20), nullable=False, default="major",
        comment="minor | major | critical | blocker",
    )
    status = db.Column(
        db.String(20), nullable=False, default="open",
        comment="open | in_progress | resolved | closed | reopened",
    )

    # ── Assignment & tracking
    reported_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reopen_count = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)

    # ── Relationships
    comments = db.relationship(
        "BugComment", backref="bug", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="BugComment.created_at",
    )
    history = db.relationship(
        "BugHistory", backref="bug", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="BugHistory.changed_at.desc()",
    )
    test_case = db.relationship("TestCase", foreign_keys=[test_case_id])
    reporter = db.relationship("User", foreign_keys=[reported_by])
    assignee = db.relationship("User", foreign_keys=[assigned_to])

    __table_args__ = (
        db.UniqueConstraint("project_id", "bug_number", name="uq_bug_number"),
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
    def code(self):
        return f"BUG-{self.bug_number:04d}" if self.bug_number else ""

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "bug_number": self.bug_number,
            "code": self.code,
            "test_case_id": self.test_case_id,
            "test_case": (
                {"id": self.test_case.id, "title": self.test_case.title, "code": self.test_case.code}
                if self.test_case else None
            ),
            "title": self.title,
            "description": self.description,
            "steps_to_reproduce": self.steps_to_reproduce,
            "expected_behavior": self.expected_behavior,
            "actual_behavior": self.actual_behavior,
            "priority": self.priority,
            "severity": self.severity,
            "status": self.status,
            "reported_by": self.reported_by,
            "reporter": self.reporter.to_brief() if self.reporter else None,
            "assigned_to": self.assigned_to,
            "assignee": self.assignee.to_brief() if self.assignee else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "reopen_count": self.reopen_count,
            "version": self.version,
            "comment_count": self.comments.count() if self.id else 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Bug {self.id}: [{self.severity}] {self.code or self.title[:30]}>"


# ═════════════════════════════════════════════════════════════════════════════
# BUG COMMENT
# ═════════════════════════════════════════════════════════════════════════════

class BugComment(db.Model):
    """Comment on a bug: discussion between testers, developers and leads."""

    __tablename__ = "bug_comments"

    id = db.Column(db.Integer, primary_key=True)
    bug_id = db.Column(
        db.Integer, db.ForeignKey("bugs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    comment = db.Column(db.Text, nullable=False)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    author = db.relationship("User", foreign_keys=[created_by])

    def to_dict(self):
        return {
            "id": self.id,
            "bug_id": self.bug_id,
            "comment": self.comment,
            "created_by": self.created_by,
            "author": self.author.to_brief() if self.author else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<BugComment {self.id}: bug#{self.bug_id} by user#{self.created_by}>"


# ═════════════════════════════════════════════════════════════════════════════
# BUG HISTORY
# ═════════════════════════════════════════════════════════════════════════════

class BugHistory(db.Model):
    """
    Field-level change audit trail for bugs.

    Populated by bug_service.update_bug in the same transaction as the
    update itself.
    """

    __tablename__ = "bug_history"

    id = db.Column(db.Integer, primary_key=True)
    bug_id = db.Column(
        db.Integer, db.ForeignKey("bugs.id", ondelete="CASCADE"),
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
            "bug_id": self.bug_id,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "changer": self.changer.to_brief() if self.changer else None,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<BugHistory {self.id}: bug#{self.bug_id} {self.field_name}>"
