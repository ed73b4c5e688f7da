from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.board.audit import record_event
from app.board.errors import ConflictError, ValidationError
from app.board.models import User
from app.board.modules.posts.models import Comment, Post

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")
DISPLAY_NAME_MAX = 64
PASSWORD_MIN = 4
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_password(password: str | None, errors: list[str]) -> None:
    if len(password or "") < PASSWORD_MIN:
        errors.append(f"Password must be at least {PASSWORD_MIN} characters.")


def validate_registration_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    username = (payload.get("username") or "").strip()
    if not USERNAME_RE.match(username):
        errors.append("Username must be 3-64 characters: letters, digits, '_', '.', '-'.")
    display_name = (payload.get("display_name") or "").strip()
    if not display_name:
        errors.append("Display name is required.")
    elif len(display_name) > DISPLAY_NAME_MAX:
        errors.append(f"Display name must be at most {DISPLAY_NAME_MAX} characters.")
    validate_password(payload.get("password"), errors)
    if not EMAIL_RE.match(normalize_email(payload.get("email"))):
        errors.append("A valid email address is required.")
    return errors


def find_by_username(s: "Session", username: str | None) -> User | None:
    return s.query(User).filter(User.username == (username or "").strip()).one_or_none()


def find_by_email(s: "Session", email: str | None) -> User | None:
    email = normalize_email(email)
    if not email:
        return None
    return s.query(User).filter(func.lower(User.email) == email).one_or_none()


def _ensure_unique(s: "Session", *, username: str | None = None, display_name: str | None = None, email: str | None = None, exclude_id: int | None = None) -> None:
    def taken(col, value) -> bool:
        q = s.query(User.id).filter(col == value)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        return q.first() is not None

    if username is not None and taken(User.username, username):
        raise ConflictError("That username is already taken.")
    if display_name is not None and taken(User.display_name, display_name):
        raise ConflictError("That display name is already taken.")
    if email is not None and taken(func.lower(User.email), email):
        raise ConflictError("That email address is already registered.")


def register_user(s: "Session", payload: dict) -> User:
    errors = validate_registration_payload(payload)
    if errors:
        raise ValidationError(errors)

    username = payload["username"].strip()
    display_name = payload["display_name"].strip()
    email = normalize_email(payload.get("email"))
    _ensure_unique(s, username=username, display_name=display_name, email=email)

    user = User(
        username=username,
        display_name=display_name,
        password_hash=generate_password_hash(payload["password"]),
        email=email,
        created_at=datetime.utcnow(),
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    return user


def authenticate(s: "Session", username: str | None, password: str | None) -> User | None:
    user = find_by_username(s, username)
    if not user or not check_password_hash(user.password_hash, password or ""):
        return None
    return user


def verify_password(user: User, password: str | None) -> bool:
    return check_password_hash(user.password_hash, password or "")


def check_profile_payload(s: "Session", user: User, payload: dict) -> tuple[str, str]:
    """Validate an edit form without writing. Returns (display_name, new_password)."""
    errors: list[str] = []
    display_name = (payload.get("display_name") or "").strip()
    if not display_name:
        errors.append("Display name is required.")
    elif len(display_name) > DISPLAY_NAME_MAX:
        errors.append(f"Display name must be at most {DISPLAY_NAME_MAX} characters.")
    new_password = (payload.get("new_password") or "").strip()
    if new_password:
        validate_password(new_password, errors)
    if errors:
        raise ValidationError(errors)

    _ensure_unique(s, display_name=display_name, exclude_id=user.id)
    return display_name, new_password


def update_profile(s: "Session", user: User, payload: dict, *, profile_image: str | None = None) -> User:
    """
    Edit the caller's own account. A blank new password keeps the old one;
    a missing upload keeps the current profile image.
    """
    display_name, new_password = check_profile_payload(s, user, payload)

    changed: list[str] = []
    if display_name != user.display_name:
        user.display_name = display_name
        changed.append("display_name")
    if new_password:
        user.password_hash = generate_password_hash(new_password)
        changed.append("password")
    if profile_image:
        user.profile_image = profile_image
        changed.append("profile_image")

    record_event(s, actor=user, action="profile.edit", entity_type="User", entity_id=str(user.id), metadata={"changed": changed})
    return user


def delete_account(s: "Session", user: User) -> None:
    """
    Remove the account with everything it owns: its comments, its posts and the
    comments others left on those posts. The caller commits this as one transaction.
    """
    user_id, display_name = user.id, user.display_name
    for post in s.query(Post).filter(Post.user_id == user_id).all():
        s.delete(post)
    for comment in s.query(Comment).filter(Comment.user_id == user_id).all():
        s.delete(comment)
    s.delete(user)
    record_event(
        s,
        actor=None,
        action="profile.delete",
        entity_type="User",
        entity_id=str(user_id),
        message=f"{display_name} deleted their account",
    )


def reset_password(s: "Session", user: User, new_password: str | None) -> None:
    errors: list[str] = []
    validate_password(new_password, errors)
    if errors:
        raise ValidationError(errors)
    user.password_hash = generate_password_hash(new_password or "")
    record_event(s, actor=user, action="password.reset", entity_type="User", entity_id=str(user.id))
