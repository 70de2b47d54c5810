"""
Permission Service: project membership lookups and role checks.

Access to any project-scoped record requires a ProjectMember row; there
is no global bypass, so even a global admin must be a member. Privileged
project operations additionally require member role admin or lead.
"""

import logging

from qatrack.core.exceptions import NotFoundError, PermissionDeniedError
from qatrack.models import db
from qatrack.models.auth import ProjectMember
from qatrack.models.project import Project

logger = logging.getLogger(__name__)


def get_membership(user_id: int, project_id: int) -> ProjectMember | None:
    return ProjectMember.query.filter_by(user_id=user_id, project_id=project_id).first()


def get_accessible_project_ids(user_id: int) -> list[int]:
    rows = db.session.query(ProjectMember.project_id).filter_by(user_id=user_id).all()
    return sorted({r[0] for r in rows})


def first_accessible_project_id(user_id: int) -> int | None:
    """Oldest project (by id) the user belongs to; used as the default list scope."""
    row = (
        db.session.query(ProjectMember.project_id)
        .filter_by(user_id=user_id)
        .order_by(ProjectMember.project_id)
        .first()
    )
    return row[0] if row else None


def require_membership(user_id: int, project_id: int, roles: tuple | None = None) -> ProjectMember:
    """Return the caller's membership or raise.

    Unknown projects raise NotFoundError; non-members and members lacking
    one of ``roles`` get PermissionDeniedError.
    """
    membership = get_membership(user_id, project_id)
    if membership is None:
        if db.session.get(Project, project_id) is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        logger.warning("User %s denied access to project %s: not a member", user_id, project_id)
        raise PermissionDeniedError("You do not have access to this project")
    if roles and membership.role not in roles:
        raise PermissionDeniedError()
    return membership
