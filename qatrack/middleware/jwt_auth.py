"""
JWT Auth Middleware: Parses JWT from Authorization header, sets g.jwt_* and g.current_user.

Every /api/v1/ route outside JWT_PUBLIC_PREFIXES requires a valid access
token for an active user. Failures answer 401 with a ``redirect`` hint so
clients can send the user to the login page.
"""

import logging

import jwt as pyjwt
from flask import g, request

from qatrack.models import db
from qatrack.models.auth import User
from qatrack.services.jwt_service import decode_access_token
from qatrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

LOGIN_REDIRECT = "/auth/login"

# Paths that skip JWT auth entirely
JWT_PUBLIC_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/signup",
    "/api/v1/auth/verify-email",
    "/api/v1/auth/refresh",
    "/api/v1/auth/logout",
    "/api/v1/health",
)


def _unauthorized(message):
    return api_error(E.UNAUTHORIZED, message, details={"redirect": LOGIN_REDIRECT})


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.current_user = None

        path = request.path
        if request.method == "OPTIONS" or not path.startswith("/api/v1/"):
            return None

        # Decode opportunistically on public paths (logout uses it), enforce elsewhere
        is_public = path.startswith(JWT_PUBLIC_PREFIXES)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return None if is_public else _unauthorized("Authentication required")

        token = auth_header[7:]  # Strip "Bearer "
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return None if is_public else _unauthorized("Token expired")
        except pyjwt.InvalidTokenError:
            return None if is_public else _unauthorized("Invalid token")

        user = db.session.get(User, int(payload.get("sub")))
        if user is None or not user.is_active:
            if is_public:
                return None
            logger.warning("Rejected token for missing/inactive user sub=%s", payload.get("sub"))
            return _unauthorized("User inactive or not found")

        g.jwt_user_id = user.id
        g.jwt_role = user.role
        g.current_user = user
        return None
