"""
Crypto utilities: bcrypt password hashing and random tokens.

Password hashing:
  bcrypt ($2b$, BCRYPT_ROUNDS from config, 12 by default). Legacy werkzeug
  hashes (scrypt/pbkdf2) are still accepted by verify_password
  so imported accounts keep working.
"""

import secrets

import bcrypt
from flask import current_app, has_app_context
from werkzeug.security import check_password_hash

DEFAULT_BCRYPT_ROUNDS = 12


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (BCRYPT_ROUNDS, default 12)."""
    rounds = DEFAULT_BCRYPT_ROUNDS
    if has_app_context():
        rounds = current_app.config.get("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and legacy werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_confirmation_token() -> str:
    """URL-safe random token for email confirmation links."""
    return secrets.token_urlsafe(32)
