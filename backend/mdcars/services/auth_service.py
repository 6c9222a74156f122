# Overview: Service-layer operations for auth; users and password hashing.

"""
Authentication Service

WHY: Every money-moving action records who did it. Uses bcrypt for
password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
- Deactivated users cannot authenticate
"""

import logging
import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CASHIER, ROLES
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    apply_patch,
    coerce_bool,
    coerce_enum,
    coerce_str,
    require_fields,
)
from .concurrency import atomic

logger = logging.getLogger(__name__)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-+=?]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


USER_FIELDS = {
    "first_name": lambda v, k: coerce_str(v, k, required=True, max_length=128),
    "last_name": lambda v, k: coerce_str(v, k, required=True, max_length=128),
    "email": lambda v, k: coerce_str(v, k, max_length=255),
    "phone": lambda v, k: coerce_str(v, k, max_length=32),
    "role": lambda v, k: coerce_enum(v, k, ROLES),
    "is_active": coerce_bool,
}


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username.asc()).all()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", {"user_id": user_id})
    return user


def create_user(payload: dict) -> User:
    """
    Create a user. Username must be unique; password must meet strength
    requirements. Role defaults to cashier.
    """
    require_fields(payload, "username", "password", "first_name", "last_name")
    payload = dict(payload)
    username = coerce_str(payload.pop("username"), "username", required=True, max_length=64)
    password_hash = hash_password(payload.pop("password"))
    payload.setdefault("role", ROLE_CASHIER)

    def _op():
        if db.session.query(User.id).filter(User.username == username).first():
            raise ConflictError("Username already exists", {"username": username})
        user = User(username=username, password_hash=password_hash, is_active=True)
        apply_patch(user, payload, USER_FIELDS)
        db.session.add(user)
        db.session.flush()
        return user

    user = atomic(_op)
    logger.info("User created username=%s role=%s", user.username, user.role)
    return user


def update_user(user_id: int, payload: dict) -> User:
    payload = dict(payload)
    new_password = payload.pop("password", None)
    password_hash = hash_password(new_password) if new_password else None

    def _op():
        user = get_user(user_id)
        apply_patch(user, payload, USER_FIELDS)
        if password_hash:
            user.password_hash = password_hash
        db.session.flush()
        return user

    user = atomic(_op)
    if not user.is_active or password_hash:
        from .session_service import revoke_all_user_sessions
        revoke_all_user_sessions(user.id)
    return user


PROFILE_FIELDS = {
    "username": lambda v, k: coerce_str(v, k, required=True, max_length=64),
    "first_name": USER_FIELDS["first_name"],
    "last_name": USER_FIELDS["last_name"],
    "email": USER_FIELDS["email"],
    "phone": USER_FIELDS["phone"],
}


def update_profile(user_id: int, payload: dict) -> User:
    """
    Self-service edit of the actor's own details.

    Role and active flag stay owner-only (see update_user).
    """
    def _op():
        user = get_user(user_id)
        username = PROFILE_FIELDS["username"](payload["username"], "username") if "username" in payload else None
        if username is not None and username != user.username:
            taken = db.session.query(User.id).filter(User.username == username, User.id != user.id).first()
            if taken:
                raise ConflictError("Username already exists", {"username": username})
        apply_patch(user, payload, PROFILE_FIELDS)
        db.session.flush()
        return user

    user = atomic(_op)
    logger.info("Profile updated user_id=%s", user.id)
    return user


def change_password(user_id: int, current_password: str, new_password: str, *, keep_token: str | None = None) -> User:
    """
    Replace the actor's password after checking the current one.

    Every other session of the user is revoked; keep_token (the caller's
    own session) stays valid.
    """
    if not current_password or not new_password:
        raise ValidationError("current_password and new_password required")
    user = get_user(user_id)
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    password_hash = hash_password(new_password)

    def _op():
        target = get_user(user_id)
        target.password_hash = password_hash
        db.session.flush()
        return target

    user = atomic(_op)
    from .session_service import revoke_all_user_sessions
    revoke_all_user_sessions(user.id, keep_token=keep_token)
    logger.info("Password changed user_id=%s", user.id)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the user when the credentials match an active account.

    WHY same None for every failure: does not reveal which usernames exist.
    """
    if not username or not password:
        return None
    user = db.session.query(User).filter_by(username=username).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
