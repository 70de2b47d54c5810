"""
Auth Blueprint: sign-up, email confirmation and JWT sessions.

Endpoints:
  POST /api/v1/auth/signup        - Register credentials, send confirmation link
  GET  /api/v1/auth/verify-email  - Confirm email (?token=...), also POST
  POST /api/v1/auth/login         - Email + password → JWT pair
  POST /api/v1/auth/refresh       - Refresh token → new JWT pair (rotation)
  POST /api/v1/auth/logout        - Revoke refresh token / all sessions
  GET  /api/v1/auth/me            - Current user profile
"""

from flask import Blueprint, g, jsonify, request

from qatrack.blueprints import json_body
from qatrack.services.jwt_service import (
    create_session,
    decode_refresh_token,
    generate_token_pair,
    get_active_session_by_token,
    hash_token,
    revoke_all_user_sessions,
    revoke_session,
    revoke_session_by_token,
    rotate_session,
)
from qatrack.services.user_service import (
    UserServiceError,
    authenticate_user,
    confirm_email,
    get_user_by_id,
    signup as signup_user,
)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


def _service_error(e: UserServiceError):
    return jsonify({"error": e.message, **e.extra}), e.status_code


def _token_response(tokens: dict, user=None, status=200):
    body = {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }
    if user is not None:
        body["user"] = user.to_dict()
    return jsonify(body), status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/signup
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/signup", methods=["POST"])
def signup():
    """
    Register a new account. The profile is created on first login.

    Body: { "email": "...", "password": "...", "full_name": "...", "role": "..." }
    """
    data = json_body()
    email = str(data.get("email") or "").strip()
    password = str(data.get("password") or "")

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    full_name = str(data.get("full_name") or "").strip() or None
    try:
        identity = signup_user(email, password, full_name, data.get("role"))
    except UserServiceError as e:
        return _service_error(e)

    return jsonify({
        "message": "Check your inbox to confirm your email",
        "email": identity.email,
        "redirect": "/auth/verify-email",
    }), 201


# ═══════════════════════════════════════════════════════════════
# GET|POST /api/v1/auth/verify-email
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/verify-email", methods=["GET", "POST"])
def verify_email():
    """Confirm an email address with the token from the confirmation link."""
    data = json_body()
    token = str(request.args.get("token") or data.get("token") or "")

    try:
        identity = confirm_email(token)
    except UserServiceError as e:
        return _service_error(e)

    return jsonify({
        "message": "Email confirmed",
        "email": identity.email,
        "redirect": "/auth/login",
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    try:
        user = authenticate_user(email, password)
    except UserServiceError as e:
        return _service_error(e)

    tokens = generate_token_pair(user.id, user.role)
    create_session(
        user.id, tokens["token_hash"],
        request.remote_addr, request.headers.get("User-Agent", ""),
        tokens["expires_at"],
    )
    return _token_response(tokens, user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new token pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    data = json_body()
    refresh_token = str(data.get("refresh_token") or "")

    if not refresh_token:
        return jsonify({"error": "Refresh token is required"}), 400

    try:
        payload = decode_refresh_token(refresh_token)
        user_id = int(payload.get("sub"))
    except Exception:
        return jsonify({"error": "Invalid or expired refresh token", "redirect": "/auth/login"}), 401

    session = get_active_session_by_token(user_id, hash_token(refresh_token))
    if not session:
        return jsonify({"error": "Session not found or revoked", "redirect": "/auth/login"}), 401

    if session.is_expired:
        revoke_session(session)
        return jsonify({"error": "Session expired", "redirect": "/auth/login"}), 401

    user = get_user_by_id(user_id)
    if not user or not user.is_active:
        revoke_session(session)
        return jsonify({"error": "User inactive or not found", "redirect": "/auth/login"}), 401

    tokens = generate_token_pair(user.id, user.role)
    rotate_session(
        session,
        user.id,
        tokens["token_hash"],
        tokens["expires_at"],
        request.remote_addr,
        request.headers.get("User-Agent", ""),
    )
    return _token_response(tokens)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """
    Revoke the current refresh token / session.

    Body: { "refresh_token": "..." }  or uses Authorization header
    """
    data = json_body()
    refresh_token = str(data.get("refresh_token") or "")

    if refresh_token:
        revoke_session_by_token(hash_token(refresh_token))
    elif g.get("jwt_user_id"):
        # No token given: log out everywhere
        revoke_all_user_sessions(g.jwt_user_id)

    return jsonify({"message": "Logged out successfully", "redirect": "/auth/login"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    """Current user profile with project memberships."""
    user = g.current_user
    memberships = [
        {"project_id": m.project_id, "project_name": m.project.name, "role": m.role}
        for m in user.project_memberships.all()
    ]
    return jsonify({"user": user.to_dict(), "memberships": memberships}), 200
