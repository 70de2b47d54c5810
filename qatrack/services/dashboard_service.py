"""Personal dashboard summary for the signed-in user."""

from qatrack.models import db
from qatrack.models.auth import ProjectMember, User
from qatrack.models.bug import RESOLVED_STATUSES, Bug

RECENT_BUGS_LIMIT = 5


def _recent_bug(bug: Bug) -> dict:
    return {
        "id": bug.id,
        "project_id": bug.project_id,
        "code": bug.code,
        "title": bug.title,
        "status": bug.status,
        "priority": bug.priority,
        "severity": bug.severity,
        "created_at": bug.created_at.isoformat() if bug.created_at else None,
    }


def get_dashboard(user: User) -> dict:
    """Profile, membership count, reported/assigned bug counts and recent bugs.

    Recent bugs are the latest ones the user reported or is assigned to,
    limited to projects the user still belongs to.
    """
    projects_count = ProjectMember.query.filter_by(user_id=user.id).count()
    member_projects = db.select(ProjectMember.project_id).where(ProjectMember.user_id == user.id)

    recent = (
        Bug.query.filter(
            Bug.project_id.in_(member_projects),
            db.or_(Bug.reported_by == user.id, Bug.assigned_to == user.id),
        )
        .order_by(Bug.created_at.desc(), Bug.id.desc())
        .limit(RECENT_BUGS_LIMIT)
        .all()
    )

    return {
        "profile": user.to_dict(),
        "projects_count": projects_count,
        "bugs_count": Bug.query.filter_by(reported_by=user.id).count(),
        "assigned_open_bugs": Bug.query.filter(
            Bug.assigned_to == user.id,
            Bug.status.notin_(RESOLVED_STATUSES),
        ).count(),
        "recent_bugs": [_recent_bug(b) for b in recent],
    }
