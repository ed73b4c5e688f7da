"""
Server-side sessions.

The cookie carries an opaque token only; the payload (identity, CSRF token,
pending verification codes, flashed messages) lives in a SessionStore:

- MemorySessionStore: process-local dict, for tests and single-process dev.
- SqlSessionStore: `sessions` table, survives restarts and is shared by workers.

Every entry has an explicit TTL; expired entries resolve to nothing.
"""
from __future__ import annotations

import copy
import json
import logging
import secrets
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from flask import Flask, Request, Response, session
from flask.sessions import SessionInterface, SessionMixin
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.datastructures import CallbackDict

from app.board.models import SessionRecord, User

logger = logging.getLogger(__name__)


def new_token() -> str:
    return secrets.token_urlsafe(32)


class SessionStore:
    def get(self, token: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def set(self, token: str, data: dict[str, Any], ttl: int) -> None:
        raise NotImplementedError

    def delete(self, token: str) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, token: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            expires_at, data = entry
            if expires_at <= self._clock():
                del self._entries[token]
                return None
            return copy.deepcopy(data)

    def set(self, token: str, data: dict[str, Any], ttl: int) -> None:
        with self._lock:
            now = self._clock()
            self._entries[token] = (now + ttl, copy.deepcopy(data))
            expired = [t for t, (exp, _) in self._entries.items() if exp <= now]
            for t in expired:
                del self._entries[t]

    def delete(self, token: str) -> None:
        with self._lock:
            self._entries.pop(token, None)

    def __len__(self) -> int:
        return len(self._entries)


class SqlSessionStore(SessionStore):
    def __init__(self, sm: sessionmaker[Session], clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self._sm = sm
        self._clock = clock

    def get(self, token: str) -> dict[str, Any] | None:
        with self._sm() as s:
            rec = s.get(SessionRecord, token)
            if rec is None:
                return None
            if rec.expires_at <= self._clock():
                s.delete(rec)
                s.commit()
                return None
            return json.loads(rec.data_json or "{}")

    def set(self, token: str, data: dict[str, Any], ttl: int) -> None:
        now = self._clock()
        with self._sm() as s:
            rec = s.get(SessionRecord, token)
            if rec is None:
                rec = SessionRecord(token=token)
                s.add(rec)
            rec.data_json = json.dumps(data)
            rec.expires_at = now + timedelta(seconds=ttl)
            rec.updated_at = now
            s.commit()

    def delete(self, token: str) -> None:
        with self._sm() as s:
            rec = s.get(SessionRecord, token)
            if rec is not None:
                s.delete(rec)
                s.commit()

    def purge_expired(self) -> int:
        with self._sm() as s:
            n = s.query(SessionRecord).filter(SessionRecord.expires_at <= self._clock()).delete()
            s.commit()
            return n


def session_store_from_config(app: Flask) -> SessionStore:
    backend = (app.config.get("SESSION_BACKEND") or "memory").strip().lower()
    if backend == "sql":
        return SqlSessionStore(app.extensions["sqlalchemy_sessionmaker"])
    return MemorySessionStore()


class ServerSideSession(CallbackDict, SessionMixin):
    def __init__(self, initial: dict[str, Any] | None = None, token: str | None = None) -> None:
        def on_update(self: ServerSideSession) -> None:
            self.modified = True

        CallbackDict.__init__(self, initial, on_update)
        self.token = token
        self.new = token is None
        self.modified = False
        self.rotate = False

    def regenerate(self) -> None:
        """Issue a fresh token on save; the old one is destroyed."""
        self.rotate = True
        self.modified = True

    def clear(self) -> None:
        super().clear()
        self.regenerate()


class ServerSideSessionInterface(SessionInterface):
    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def _ttl(self, app: Flask) -> int:
        return int(app.config.get("SESSION_TTL_SECONDS") or 8 * 3600)

    def open_session(self, app: Flask, request: Request) -> ServerSideSession:
        token = request.cookies.get(self.get_cookie_name(app))
        if token:
            data = self.store.get(token)
            if data is not None:
                return ServerSideSession(data, token=token)
        return ServerSideSession()

    def save_session(self, app: Flask, session: ServerSideSession, response: Response) -> None:  # type: ignore[override]
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)

        if session.rotate and session.token:
            self.store.delete(session.token)
            session.token = None

        if not session:
            if session.modified:
                response.delete_cookie(name, domain=domain, path=path)
            return

        if not self.should_set_cookie(app, session) and session.token:
            return

        if session.token is None:
            session.token = new_token()
        self.store.set(session.token, dict(session), self._ttl(app))
        response.set_cookie(
            name,
            session.token,
            expires=self.get_expiration_time(app, session),
            httponly=self.get_cookie_httponly(app),
            domain=domain,
            path=path,
            secure=self.get_cookie_secure(app),
            samesite=self.get_cookie_samesite(app),
        )
        response.vary.add("Cookie")


def init_sessions(app: Flask, store: SessionStore | None = None) -> SessionStore:
    store = store or session_store_from_config(app)
    app.extensions["session_store"] = store
    app.session_interface = ServerSideSessionInterface(store)
    logger.info("Session store: %s (ttl=%ss)", type(store).__name__, app.config.get("SESSION_TTL_SECONDS"))
    return store


# ---------- Identity ----------
def sign_in(user: User) -> None:
    """Bind `user` to the current session under a fresh token."""
    session.clear()
    session["user_id"] = user.id
    session["display_name"] = user.display_name
    session["profile_image"] = user.profile_image


def refresh_identity(user: User) -> None:
    session["display_name"] = user.display_name
    session["profile_image"] = user.profile_image


def sign_out() -> None:
    session.clear()
