"""
Auth Models: identities, user profiles, sessions, project_members.

AuthIdentity holds credentials and the metadata captured at sign-up.
User is the application profile, upserted from that metadata on the
first successful sign-in (see user_service.ensure_profile).
"""

import uuid
from datetime import datetime, timezone

from qatrack.models import db


USER_ROLES = ("admin", "lead", "tester")
MEMBER_ROLES = ("admin", "lead", "tester")
MANAGER_ROLES = ("admin", "lead")


# ═══════════════════════════════════════════════════════════════
# 1. AUTH IDENTITIES
# ═══════════════════════════════════════════════════════════════
class AuthIdentity(db.Model):
    __tablename__ = "auth_identities"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    confirmation_token = db.Column(db.String(256), index=True)
    email_confirmed_at = db.Column(db.DateTime)
    user_metadata = db.Column(db.JSON, default=dict)  # full_name, role (raw)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    profile = db.relationship("User", back_populates="identity", uselist=False)

    @property
    def is_confirmed(self):
        return self.email_confirmed_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "email_confirmed_at": (
                self.email_confirmed_at.isoformat() if self.email_confirmed_at else None
            ),
            "user_metadata": self.user_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuthIdentity {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS (profile)
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.Integer,
        db.ForeignKey("auth_identities.id", ondelete="CASCADE"),
        primary_key=True,
    )
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default="tester")  # admin | lead | tester
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    identity = db.relationship("AuthIdentity", back_populates="profile")
    sessions = db.relationship(
        "Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    project_memberships = db.relationship(
        "ProjectMember", back_populates="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    @property
    def display_name(self):
        return self.full_name or self.email

    @property
    def can_create_projects(self):
        return self.role in MANAGER_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_brief(self):
        return {"id": self.id, "full_name": self.full_name, "email": self.email}

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 3. SESSIONS (refresh tokens)
# ═══════════════════════════════════════════════════════════════
class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash = db.Column(db.String(256), nullable=False)  # SHA-256 of refresh token
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > self.expires_at.replace(tzinfo=timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 4. PROJECT_MEMBERS (User ↔ Project assignment)
# ═══════════════════════════════════════════════════════════════
class ProjectMember(db.Model):
    __tablename__ = "project_members"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default="tester")  # admin | lead | tester
    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        db.Index("ix_project_members_project", "project_id"),
        db.Index("ix_project_members_user", "user_id"),
    )

    user = db.relationship("User", back_populates="project_memberships")
    project = db.relationship("Project", back_populates="members")

    @property
    def can_manage(self):
        return self.role in MANAGER_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
            "user": self.user.to_brief() if self.user else None,
        }

    def __repr__(self):
        return f"<ProjectMember project#{self.project_id} user#{self.user_id} ({self.role})>"
