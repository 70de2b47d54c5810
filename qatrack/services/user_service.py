"""
User Service: sign-up, email confirmation, authentication, profile upsert
and admin role management.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from qatrack.models import db
from qatrack.models.auth import USER_ROLES, AuthIdentity, User
from qatrack.services.email_service import send_verification_email
from qatrack.services.jwt_service import revoke_all_user_sessions
from qatrack.utils.crypto import generate_confirmation_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

# Raw metadata role → canonical role
_ADMIN_ALIASES = {"admin", "padmin", "superadmin", "owner", "administrator"}
_LEAD_ALIASES = {"lead", "leader", "manager", "pm"}


class UserServiceError(Exception):
    """Custom exception for user service errors."""
    def __init__(self, message, status_code=400, extra=None):
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)


def normalize_role(raw) -> str:
    """Map a free-form role from sign-up metadata onto admin | lead | tester."""
    value = str(raw or "").strip().lower()
    if value in _ADMIN_ALIASES:
        return "admin"
    if value in _LEAD_ALIASES:
        return "lead"
    return "tester"


def _normalize_email(email: str) -> str:
    try:
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise UserServiceError(f"Invalid email: {e}")
    return valid.normalized.lower()


# ═══════════════════════════════════════════════════════════════
# Sign-up & confirmation
# ═══════════════════════════════════════════════════════════════
def signup(email: str, password: str, full_name: str | None = None,
           role: str | None = None) -> AuthIdentity:
    """Register credentials and send the confirmation link.

    The raw ``role`` is kept in metadata; it is normalized when the
    profile is created on first sign-in.
    """
    email = _normalize_email(email)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise UserServiceError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if AuthIdentity.query.filter_by(email=email).first():
        raise UserServiceError(f"User with email {email} already exists", 409)

    identity = AuthIdentity(
        email=email,
        password_hash=hash_password(password),
        confirmation_token=generate_confirmation_token(),
        user_metadata={"full_name": full_name, "role": role},
    )
    db.session.add(identity)
    db.session.commit()

    if not send_verification_email(email, full_name, identity.confirmation_token):
        logger.warning("Verification email not delivered for identity %d", identity.id)
    logger.info("Signed up identity %d (%s)", identity.id, email)
    return identity


def confirm_email(token: str) -> AuthIdentity:
    """Mark the identity owning ``token`` as confirmed (idempotent per token)."""
    if not token:
        raise UserServiceError("Confirmation token is required")
    identity = AuthIdentity.query.filter_by(confirmation_token=token).first()
    if not identity:
        raise UserServiceError("Invalid or already used confirmation token", 404)
    identity.email_confirmed_at = datetime.now(timezone.utc)
    identity.confirmation_token = None
    db.session.commit()
    return identity


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate_user(email: str, password: str) -> User:
    """Check credentials and return the (possibly just created) profile."""
    identity = AuthIdentity.query.filter_by(email=(email or "").strip().lower()).first()
    if not identity or not verify_password(password, identity.password_hash):
        raise UserServiceError("Invalid email or password", 401)

    if not identity.is_confirmed:
        raise UserServiceError(
            "Email not confirmed", 403, extra={"redirect": "/auth/verify-email"}
        )

    user = ensure_profile(identity)
    if not user.is_active:
        raise UserServiceError("Account is inactive", 403)
    return user


def ensure_profile(identity: AuthIdentity) -> User:
    """Create the User profile on first sign-in from the identity's metadata.

    An existing profile is returned unchanged; admin edits to role or
    is_active are never overwritten by stale sign-up metadata.
    """
    user = db.session.get(User, identity.id)
    if user:
        return user

    metadata = identity.user_metadata or {}
    user = User(
        id=identity.id,
        email=identity.email,
        full_name=metadata.get("full_name") or identity.email.split("@")[0],
        role=normalize_role(metadata.get("role")),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Created profile for user %d with role %s", user.id, user.role)
    return user


# ═══════════════════════════════════════════════════════════════
# User lookups
# ═══════════════════════════════════════════════════════════════
def get_user_by_id(user_id: int) -> User | None:
    """Find a user by ID."""
    return db.session.get(User, user_id)


def get_user_by_email(email: str) -> User | None:
    """Find a profile by (case-insensitive) email."""
    return User.query.filter(db.func.lower(User.email) == (email or "").strip().lower()).first()


def list_users(role: str | None = None, is_active: bool | None = None):
    """Query of user profiles, ordered by name."""
    q = User.query
    if role:
        q = q.filter(User.role == role)
    if is_active is not None:
        q = q.filter(User.is_active.is_(is_active))
    return q.order_by(User.full_name, User.id)


# ═══════════════════════════════════════════════════════════════
# Admin actions
# ═══════════════════════════════════════════════════════════════
def admin_update_user(user_id: int, data: dict, acting_user_id: int) -> User:
    """Change a user's global role and/or active flag.

    Deactivation revokes every session of the user. Admins cannot demote
    or deactivate themselves.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise UserServiceError("User not found", 404)

    if "role" in data:
        role = data["role"]
        if role not in USER_ROLES:
            raise UserServiceError(f"Invalid role. Must be one of: {', '.join(USER_ROLES)}")
        if user.id == acting_user_id and role != "admin":
            raise UserServiceError("You cannot change your own role", 422)
        user.role = role

    if "is_active" in data:
        is_active = data["is_active"]
        if not isinstance(is_active, bool):
            raise UserServiceError("is_active must be a boolean")
        if user.id == acting_user_id and not is_active:
            raise UserServiceError("You cannot deactivate your own account", 422)
        user.is_active = is_active
        if not is_active:
            revoke_all_user_sessions(user.id, commit=False)

    db.session.commit()
    logger.info("User %d updated by admin %d: %s", user.id, acting_user_id, sorted(data))
    return user
