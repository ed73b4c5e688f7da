import secrets
from urllib.parse import parse_qs

from flask import session, Request


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form or header."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    expected = session.get("csrf_token") or ""
    return bool(token and expected and secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")))


class MethodOverrideMiddleware:
    """
    HTML forms can only POST; `?_method=PUT|PATCH|DELETE` on a POST turns it into that verb.
    Read from the query string so the request body is left untouched.
    """

    allowed_methods = frozenset({"PUT", "PATCH", "DELETE"})

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        if environ.get("REQUEST_METHOD", "").upper() == "POST":
            values = parse_qs(environ.get("QUERY_STRING", ""))
            method = (values.get("_method") or [""])[0].upper()
            if method in self.allowed_methods:
                environ["REQUEST_METHOD"] = method
        return self.app(environ, start_response)
