# Overview: Password hashing and bearer-token sessions.

"""
Authentication.

Passwords are hashed with bcrypt. Sessions are random bearer tokens; only
their SHA-256 hash is stored (tokens are high-entropy, so a fast hash is
sufficient), and they expire after SESSION_TTL_HOURS.
"""

import hashlib
import secrets
from datetime import timedelta, timezone

import bcrypt
from flask import current_app

from ..errors import AuthenticationError
from ..extensions import db
from ..models import SessionToken, User
from loyalty.time_utils import utcnow


MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def authenticate(utorid: str, password: str) -> User:
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    return user


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """Returns (session_record, plaintext_token)."""
    user = db.session.get(User, user_id)
    if not user:
        raise AuthenticationError("User not found")

    plaintext_token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=int(current_app.config.get("SESSION_TTL_HOURS", 24)))

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + ttl,
        is_revoked=False,
    )
    user.last_login_at = now
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """Return the session's user, or None if the token is unknown, expired or revoked."""
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None
    expires_at = session.expires_at
    if expires_at.tzinfo is not None:
        expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
    if expires_at <= utcnow():
        return None
    user = session.user
    if not user or not user.is_active:
        return None
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    db.session.commit()
    return True
