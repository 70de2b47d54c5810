"""
Bug service: CRUD, guarded status workflow, comments and change history.

Transaction policy: functions flush; the calling route commits once via
db_commit_or_error(). A bug update and its history rows therefore commit
or roll back together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from qatrack.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from qatrack.models import db
from qatrack.models.auth import MANAGER_ROLES, ProjectMember, User
from qatrack.models.bug import (
    BUG_PRIORITIES,
    BUG_SEVERITIES,
    BUG_STATUSES,
    VALID_TRANSITIONS,
    Bug,
    BugComment,
    BugHistory,
    validate_bug_transition,
)
from qatrack.models.testing import TestCase
from qatrack.services.history import (
    BUG_TRACKED_FIELDS,
    UNASSIGNED_LABEL,
    diff_fields,
    record_changes,
)
from qatrack.services.permission_service import require_membership
from qatrack.utils.helpers import parse_int

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("description", "steps_to_reproduce", "expected_behavior", "actual_behavior")

DETAIL_HISTORY_LIMIT = 10


class InvalidTransitionError(ValidationError):
    """Status change not allowed from the bug's current status."""

    def __init__(self, old_status: str, new_status: str) -> None:
        self.allowed = VALID_TRANSITIONS.get(old_status, [])
        super().__init__(
            f"Invalid status transition: {old_status} → {new_status}",
            details={"allowed": self.allowed},
        )


def next_bug_number(project_id: int) -> int:
    """Next sequential bug number within a project (max + 1, never reused)."""
    current = (
        db.session.query(db.func.max(Bug.bug_number))
        .filter(Bug.project_id == project_id)
        .scalar()
    )
    return (current or 0) + 1


def can_manage_bug(membership: ProjectMember, bug: Bug, user_id: int) -> bool:
    """Project admins/leads and the assignee may change a bug."""
    return membership.role in MANAGER_ROLES or bug.assigned_to == user_id


def _choice(data: dict, field: str, choices: tuple, default: str | None = None) -> str:
    value = data.get(field) or default
    if value not in choices:
        raise ValidationError(
            f"Invalid {field}. Must be one of: {', '.join(choices)}",
            details={field: value},
        )
    return value


def _resolve_assignee(project_id: int, raw) -> int | None:
    if raw in (None, ""):
        return None
    assignee_id = parse_int(raw)
    if assignee_id is None or not ProjectMember.query.filter_by(
        project_id=project_id, user_id=assignee_id,
    ).first():
        raise ValidationError(
            "assigned_to must be a member of the project", details={"assigned_to": raw},
        )
    return assignee_id


def _resolve_test_case(project_id: int, raw) -> int | None:
    if raw in (None, ""):
        return None
    tc_id = parse_int(raw)
    tc = db.session.get(TestCase, tc_id) if tc_id is not None else None
    if tc is None or tc.project_id != project_id:
        raise ValidationError(
            "test_case_id must reference a test case of the same project",
            details={"test_case_id": raw},
        )
    return tc.id


def _assignee_label(user_id: int | None) -> str:
    if user_id is None:
        return UNASSIGNED_LABEL
    user = db.session.get(User, user_id)
    return user.display_name if user else UNASSIGNED_LABEL


# ═════════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════════

def list_bugs(user_id: int, project_id: int, filters: dict | None = None):
    """Query of a project's bugs, newest first.

    Filters: status, priority, severity, assigned_to, test_case_id, search
    """
    require_membership(user_id, project_id)
    filters = filters or {}
    q = Bug.query.filter(Bug.project_id == project_id)

    for field in ("status", "priority", "severity"):
        if filters.get(field):
            q = q.filter(getattr(Bug, field) == filters[field])
    assigned_to = parse_int(filters.get("assigned_to"))
    if assigned_to is not None:
        q = q.filter(Bug.assigned_to == assigned_to)
    test_case_id = parse_int(filters.get("test_case_id"))
    if test_case_id is not None:
        q = q.filter(Bug.test_case_id == test_case_id)
    if filters.get("search"):
        term = f"%{filters['search']}%"
        q = q.filter(db.or_(Bug.title.ilike(term), Bug.description.ilike(term)))

    return q.order_by(Bug.created_at.desc(), Bug.id.desc())


def get_bug(user_id: int, bug_id: int) -> tuple[Bug, ProjectMember]:
    bug = db.session.get(Bug, bug_id)
    if bug is None:
        raise NotFoundError(resource="Bug", resource_id=bug_id)
    membership = require_membership(user_id, bug.project_id)
    return bug, membership


def get_bug_detail(user_id: int, bug_id: int) -> dict:
    """Bug with comments (oldest first) and the latest history rows."""
    bug, membership = get_bug(user_id, bug_id)
    history = (
        BugHistory.query.filter_by(bug_id=bug.id)
        .order_by(BugHistory.changed_at.desc(), BugHistory.id.desc())
        .limit(DETAIL_HISTORY_LIMIT)
        .all()
    )
    d = bug.to_dict()
    d["comments"] = [c.to_dict() for c in _comments_query(bug.id).all()]
    d["history"] = [h.to_dict() for h in history]
    d["can_manage"] = can_manage_bug(membership, bug, user_id)
    d["allowed_transitions"] = VALID_TRANSITIONS.get(bug.status, [])
    return d


def list_history(user_id: int, bug_id: int) -> list[BugHistory]:
    bug, _membership = get_bug(user_id, bug_id)
    return (
        BugHistory.query.filter_by(bug_id=bug.id)
        .order_by(BugHistory.changed_at.desc(), BugHistory.id.desc())
        .all()
    )


def get_form_options(user_id: int, project_id: int) -> dict:
    """Members (assignees) and active test cases for the bug form."""
    require_membership(user_id, project_id)
    members = (
        ProjectMember.query.filter_by(project_id=project_id)
        .order_by(ProjectMember.joined_at, ProjectMember.id)
        .all()
    )
    test_cases = (
        TestCase.query.filter_by(project_id=project_id, status="active")
        .order_by(TestCase.case_number)
        .all()
    )
    return {
        "members": [m.user.to_brief() for m in members if m.user],
        "test_cases": [
            {"id": tc.id, "code": tc.code, "title": tc.title} for tc in test_cases
        ],
        "priorities": list(BUG_PRIORITIES),
        "severities": list(BUG_SEVERITIES),
    }


# ═════════════════════════════════════════════════════════════════════════════
# MUTATIONS
# ═════════════════════════════════════════════════════════════════════════════

def create_bug(user_id: int, project_id: int, data: dict) -> Bug:
    """Report a new bug; the caller becomes the reporter."""
    require_membership(user_id, project_id)

    title = str(data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    bug = Bug(
        project_id=project_id,
        bug_number=next_bug_number(project_id),
        title=title[:300],
        priority=_choice(data, "priority", BUG_PRIORITIES, "medium"),
        severity=_choice(data, "severity", BUG_SEVERITIES, "major"),
        status="open",
        test_case_id=_resolve_test_case(project_id, data.get("test_case_id")),
        assigned_to=_resolve_assignee(project_id, data.get("assigned_to")),
        reported_by=user_id,
        **{f: (str(data.get(f) or "").strip() or None) for f in _TEXT_FIELDS},
    )
    db.session.add(bug)
    db.session.flush()
    logger.info("Bug %d (%s) reported in project %d by user %d", bug.id, bug.code, project_id, user_id)
    return bug


def update_bug(user_id: int, bug_id: int, data: dict) -> Bug:
    """Update a bug with audit trail and status-transition validation.

    Tracked fields (status, priority, severity, assigned_to) get one
    history row per change. Entering "resolved" stamps resolved_at;
    reopening clears it and bumps reopen_count.

    Raises:
        PermissionDeniedError: caller is neither admin/lead nor assignee
        ConflictError: stale ``version``
        InvalidTransitionError: status change not in VALID_TRANSITIONS
        ValidationError: bad field values
    """
    bug, membership = get_bug(user_id, bug_id)
    if not can_manage_bug(membership, bug, user_id):
        raise PermissionDeniedError("Only project admins, leads or the assignee can update this bug")

    if "version" in data and parse_int(data.get("version")) != bug.version:
        raise ConflictError(
            "Bug", "version", data.get("version"),
            message="Bug was modified by someone else; reload and retry",
        )

    new = {}
    if "status" in data:
        new["status"] = _choice(data, "status", BUG_STATUSES)
    if "priority" in data:
        new["priority"] = _choice(data, "priority", BUG_PRIORITIES)
    if "severity" in data:
        new["severity"] = _choice(data, "severity", BUG_SEVERITIES)
    if "assigned_to" in data:
        new["assigned_to"] = _resolve_assignee(bug.project_id, data.get("assigned_to"))

    old_status = bug.status
    new_status = new.get("status", old_status)
    if new_status != old_status and not validate_bug_transition(old_status, new_status):
        raise InvalidTransitionError(old_status, new_status)

    # ── Untracked fields ──
    plain_changed = False
    if "title" in data:
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        plain_changed |= title[:300] != bug.title
        bug.title = title[:300]
    for field in _TEXT_FIELDS:
        if field in data:
            value = str(data.get(field) or "").strip() or None
            plain_changed |= value != getattr(bug, field)
            setattr(bug, field, value)
    if "test_case_id" in data:
        tc_id = _resolve_test_case(bug.project_id, data.get("test_case_id"))
        plain_changed |= tc_id != bug.test_case_id
        bug.test_case_id = tc_id

    # ── Field-level audit trail ──
    old = {field: getattr(bug, field) for field, _label in BUG_TRACKED_FIELDS}
    changes = diff_fields(old, new, BUG_TRACKED_FIELDS)
    changes = [
        c._replace(
            old_value=_assignee_label(old["assigned_to"]),
            new_value=_assignee_label(new["assigned_to"]),
        ) if c.field == "assigned_to" else c
        for c in changes
    ]
    for change in changes:
        setattr(bug, change.field, new[change.field])

    if new_status != old_status:
        now = datetime.now(timezone.utc)
        if new_status == "resolved":
            bug.resolved_at = now
        elif new_status == "reopened":
            bug.resolved_at = None
            bug.reopen_count = (bug.reopen_count or 0) + 1
        elif new_status == "closed" and bug.resolved_at is None:
            bug.resolved_at = now

    if changes or plain_changed:
        bug.version = (bug.version or 1) + 1
    record_changes(BugHistory, "bug_id", bug.id, changes, user_id)
    db.session.flush()
    return bug


# ═════════════════════════════════════════════════════════════════════════════
# COMMENTS
# ═════════════════════════════════════════════════════════════════════════════

def _comments_query(bug_id: int):
    return BugComment.query.filter_by(bug_id=bug_id).order_by(
        BugComment.created_at, BugComment.id,
    )


def list_comments(user_id: int, bug_id: int) -> list[BugComment]:
    bug, _membership = get_bug(user_id, bug_id)
    return _comments_query(bug.id).all()


def add_comment(user_id: int, bug_id: int, text) -> BugComment:
    """Append a comment; any project member may comment."""
    bug, _membership = get_bug(user_id, bug_id)
    comment_text = str(text or "").strip()
    if not comment_text:
        raise ValidationError("comment is required", details={"comment": "required"})
    comment = BugComment(bug_id=bug.id, comment=comment_text, created_by=user_id)
    db.session.add(comment)
    db.session.flush()
    return comment
