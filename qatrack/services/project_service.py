"""Project and membership service.

Transaction policy: functions flush, the calling route commits via
db_commit_or_error().
"""

from __future__ import annotations

import logging

from qatrack.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from qatrack.models import db
from qatrack.models.auth import MANAGER_ROLES, MEMBER_ROLES, ProjectMember, User
from qatrack.models.project import PROJECT_STATUSES, Project
from qatrack.services.permission_service import require_membership
from qatrack.services.user_service import get_user_by_email

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("name", "description", "status")


def _validate_project_fields(data: dict, *, creating: bool) -> dict:
    cleaned = {}
    if creating or "name" in data:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        if len(name) > 200:
            raise ValidationError("name is too long", details={"name": "max 200 characters"})
        cleaned["name"] = name
    if "description" in data:
        cleaned["description"] = str(data.get("description") or "").strip() or None
    if "status" in data or creating:
        status = data.get("status") or "active"
        if status not in PROJECT_STATUSES:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(PROJECT_STATUSES)}",
                details={"status": status},
            )
        cleaned["status"] = status
    return cleaned


# ═════════════════════════════════════════════════════════════════════════════
# PROJECTS
# ═════════════════════════════════════════════════════════════════════════════

def list_projects_for_user(user_id: int, status: str | None = None):
    """Query of (Project, member role) rows the user belongs to, newest first."""
    q = (
        db.session.query(Project, ProjectMember.role)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .filter(ProjectMember.user_id == user_id)
    )
    if status:
        q = q.filter(Project.status == status)
    return q.order_by(Project.created_at.desc(), Project.id.desc())


def create_project(user: User, data: dict) -> Project:
    """Create a project and enrol its creator.

    Only global admins and leads may create projects. The creator joins
    as member admin when globally admin, otherwise as lead.
    """
    if not user.can_create_projects:
        raise PermissionDeniedError("Only admins and leads can create projects")

    fields = _validate_project_fields(data, creating=True)
    project = Project(created_by=user.id, **fields)
    db.session.add(project)
    db.session.flush()

    db.session.add(ProjectMember(
        project_id=project.id,
        user_id=user.id,
        role="admin" if user.role == "admin" else "lead",
    ))
    db.session.flush()
    logger.info("Project %d created by user %d", project.id, user.id)
    return project


def get_project(user_id: int, project_id: int) -> Project:
    require_membership(user_id, project_id)
    return db.session.get(Project, project_id)


def update_project(user_id: int, project_id: int, data: dict) -> Project:
    require_membership(user_id, project_id, roles=MANAGER_ROLES)
    project = db.session.get(Project, project_id)
    fields = _validate_project_fields(
        {k: v for k, v in data.items() if k in _EDITABLE_FIELDS}, creating=False,
    )
    for key, value in fields.items():
        setattr(project, key, value)
    db.session.flush()
    return project


# ═════════════════════════════════════════════════════════════════════════════
# MEMBERS
# ═════════════════════════════════════════════════════════════════════════════

def list_members(user_id: int, project_id: int) -> list[ProjectMember]:
    require_membership(user_id, project_id)
    return (
        ProjectMember.query.filter_by(project_id=project_id)
        .order_by(ProjectMember.joined_at, ProjectMember.id)
        .all()
    )


def _check_role_grant(acting: ProjectMember, role: str) -> None:
    if role not in MEMBER_ROLES:
        raise ValidationError(
            f"Invalid role. Must be one of: {', '.join(MEMBER_ROLES)}",
            details={"role": role},
        )
    if role == "admin" and acting.role != "admin":
        raise PermissionDeniedError("Only project admins can grant the admin role")


def add_member(user_id: int, project_id: int, email: str, role: str = "tester") -> ProjectMember:
    """Add an existing user to the project by email."""
    acting = require_membership(user_id, project_id, roles=MANAGER_ROLES)
    if not email or not str(email).strip():
        raise ValidationError("email is required", details={"email": "required"})
    _check_role_grant(acting, role)

    target = get_user_by_email(email)
    if target is None:
        raise NotFoundError(resource="User", message="Usuario no encontrado")
    if ProjectMember.query.filter_by(project_id=project_id, user_id=target.id).first():
        raise ConflictError(
            "ProjectMember", "email", target.email,
            message="El usuario ya es miembro de este proyecto",
        )

    member = ProjectMember(project_id=project_id, user_id=target.id, role=role)
    db.session.add(member)
    db.session.flush()
    logger.info("User %d added to project %d as %s by %d", target.id, project_id, role, user_id)
    return member


def _get_member(project_id: int, member_id: int) -> ProjectMember:
    member = ProjectMember.query.filter_by(id=member_id, project_id=project_id).first()
    if member is None:
        raise NotFoundError(resource="ProjectMember", resource_id=member_id)
    return member


def update_member_role(user_id: int, project_id: int, member_id: int, role: str) -> ProjectMember:
    acting = require_membership(user_id, project_id, roles=MANAGER_ROLES)
    member = _get_member(project_id, member_id)
    _check_role_grant(acting, role)
    if member.role == "admin" and acting.role != "admin":
        raise PermissionDeniedError("Only project admins can change an admin's role")
    member.role = role
    db.session.flush()
    return member


def remove_member(user_id: int, project_id: int, member_id: int) -> None:
    """Remove a member. Members with role admin cannot be removed."""
    require_membership(user_id, project_id, roles=MANAGER_ROLES)
    member = _get_member(project_id, member_id)
    if member.role == "admin":
        raise ValidationError("Project admins cannot be removed", details={"role": "admin"})
    db.session.delete(member)
    db.session.flush()
    logger.info("Member %d removed from project %d by %d", member_id, project_id, user_id)
