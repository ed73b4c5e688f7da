from collections.abc import Callable
from functools import wraps
from typing import Any, Protocol

from flask import g, redirect, request, url_for

from app.board.errors import PermissionDenied
from app.board.models import User


class Owned(Protocol):
    user_id: int


def authorize(identity: User | None, owner_id: int | None) -> bool:
    """The only ownership rule: the signed-in user's id equals the resource's owner id."""
    if identity is None or owner_id is None:
        return False
    return identity.id == owner_id


def ensure_owner(identity: User | None, resource: Owned, *, what: str = "resource") -> None:
    if not authorize(identity, resource.user_id):
        raise PermissionDenied(f"You do not have permission to modify this {what}.")


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user:
            nxt = request.full_path or request.path
            # Avoid trailing '?' from full_path when there is no query string.
            if nxt.endswith("?"):
                nxt = nxt[:-1]
            return redirect(url_for("auth.login_get", next=nxt))
        return fn(*args, **kwargs)

    return wrapped
