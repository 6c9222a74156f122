# Overview: Service-layer operations for session tokens.

"""
Session Token Management

WHY: Secure session management with absolute timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout from SESSION_TTL_HOURS
- Revocable on logout or when the user is deactivated
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow
from ..validation import NotFoundError


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 of the token for storage.

    WHY SHA-256 not bcrypt: tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create a session for user. Returns (session_record, plaintext_token);
    the client gets the plaintext, the database only the hash.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", {"user_id": user_id})

    plaintext_token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + ttl,
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Return the session's user if the token is valid.

    Returns None if the token is unknown, expired or revoked, or the user
    has been deactivated.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session:
        return None

    now = utcnow()
    if not session.is_valid(now):
        return None

    user = session.user
    if not user or not user.is_active:
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str) -> bool:
    """Revoke session token. Returns False if it was not active."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, keep_token: str | None = None) -> int:
    """
    Revoke all active sessions for a user, except keep_token if given.
    Returns count revoked.

    WHY: deactivation or password change forces re-authentication.
    """
    now = utcnow()
    query = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False)
    if keep_token:
        query = query.filter(SessionToken.token_hash != hash_token(keep_token))
    count = query.update(
        {SessionToken.is_revoked: True, SessionToken.revoked_at: now}, synchronize_session=False
    )
    db.session.commit()
    return count
