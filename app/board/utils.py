from __future__ import annotations

from flask import flash, g, request

from app.board.errors import BoardError, ValidationError
from app.board.models import User


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def flash_error(e: BoardError) -> None:
    """Queue an error for the next rendered page (templates escape it)."""
    if isinstance(e, ValidationError):
        for m in e.messages:
            flash(m, "danger")
    else:
        flash(e.message, "danger")


def safe_next(default: str) -> str:
    # Only allow local paths to avoid open redirects.
    nxt = (request.values.get("next") or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return default
