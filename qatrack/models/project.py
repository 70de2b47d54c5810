"""Project domain model: top-level container for test cases, bugs and members."""

from datetime import datetime, timezone

from qatrack.models import db


PROJECT_STATUSES = ("active", "inactive", "completed", "archived")


class Project(db.Model):
    """Container scoping test cases, bugs and memberships."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(30), nullable=False, default="active",
        comment="active | inactive | completed | archived",
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    members = db.relationship(
        "ProjectMember", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    test_cases = db.relationship(
        "TestCase", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    bugs = db.relationship(
        "Bug", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    creator = db.relationship("User", foreign_keys=[created_by])

    def to_dict(self, include_members=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "created_by": self.created_by,
            "creator": self.creator.to_brief() if self.creator else None,
            "member_count": self.members.count() if self.id else 0,
            "test_case_count": self.test_cases.count() if self.id else 0,
            "bug_count": self.bugs.count() if self.id else 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_members:
            d["members"] = [m.to_dict() for m in self.members.all()]
        return d

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
