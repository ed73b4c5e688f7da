from __future__ import annotations

import uuid

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.board.audit import record_event
from app.board.db import db_session
from app.board.errors import ConflictError, ValidationError
from app.board.mailer import MailError, Mailer
from app.board.models import User
from app.board.modules.profiles.service import (
    EMAIL_RE,
    authenticate,
    find_by_email,
    find_by_username,
    normalize_email,
    register_user,
    reset_password,
)
from app.board.sessions import sign_in, sign_out
from app.board.utils import flash_error, safe_next
from app.board.verification import (
    PURPOSE_FIND_ID,
    PURPOSE_REGISTER,
    PURPOSE_RESET_PASSWORD,
    check_code,
    consume_code,
    issue_code,
)

bp = Blueprint("auth", __name__)


def _mailer() -> Mailer:
    return current_app.extensions["mailer"]


def load_current_user() -> None:
    """
    Resolves g.current_user from the server-side session.
    Also assigns a simple per-request request_id (for activity/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/uploads/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    user = db_session().get(User, int(user_id))
    if not user:
        # Account was deleted from another session.
        sign_out()
        return
    g.current_user = user


def _send_code(purpose: str, email: str) -> bool:
    try:
        issue_code(session, purpose, email, _mailer())
    except MailError:
        current_app.logger.exception("Verification mail failed (purpose=%s request_id=%s)", purpose, getattr(g, "request_id", None))
        flash("Could not send the verification email. Please try again later.", "danger")
        return False
    s = db_session()
    record_event(s, actor=getattr(g, "current_user", None), action="verification.issue", metadata={"purpose": purpose})
    s.commit()
    return True


# ---------- Login / logout ----------
@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    username = (request.form.get("username") or "").strip()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()

    s = db_session()
    user = authenticate(s, username, password)
    if not user:
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=username or None,
            message="Invalid credentials",
        )
        s.commit()
        flash("Login failed: wrong username or password.", "danger")
        return render_template("auth/login.html", next=nxt, username=username), 401

    sign_in(user)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return redirect(safe_next(url_for("posts.index")))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    sign_out()
    return redirect(url_for("auth.login_get"))


# ---------- Registration ----------
@bp.get("/register")
def register_get():
    return render_template("auth/register.html", email=(request.args.get("email") or "").strip())


@bp.post("/send-code")
def send_code():
    email = normalize_email(request.form.get("email"))
    if not EMAIL_RE.match(email):
        flash("A valid email address is required.", "danger")
        return redirect(url_for("auth.register_get"))
    if find_by_email(db_session(), email):
        flash("That email address is already registered.", "danger")
        return render_template("auth/register.html", email=email), 409
    if _send_code(PURPOSE_REGISTER, email):
        flash("Verification code sent. Check your inbox.", "success")
    return redirect(url_for("auth.register_get", email=email))


@bp.post("/register")
def register_post():
    payload = {
        "username": request.form.get("username"),
        "display_name": request.form.get("display_name"),
        "password": request.form.get("password"),
        "email": request.form.get("email"),
    }
    code = request.form.get("code")
    email = normalize_email(payload["email"])

    if not check_code(session, PURPOSE_REGISTER, email, code):
        flash("Verification code does not match this email address.", "danger")
        return render_template("auth/register.html", form=payload, email=email), 400

    s = db_session()
    try:
        user = register_user(s, payload)
    except ConflictError as e:
        s.rollback()
        flash_error(e)
        return render_template("auth/register.html", form=payload, email=email), 409
    except ValidationError as e:
        s.rollback()
        flash_error(e)
        return render_template("auth/register.html", form=payload, email=email), 400
    s.commit()
    consume_code(session, PURPOSE_REGISTER, email, code)

    current_app.logger.info("Registered user id=%s", user.id)
    flash("Registration complete. Please log in.", "success")
    return redirect(url_for("auth.login_get"))


# ---------- Password reset ----------
@bp.get("/forgot-password")
def forgot_password_get():
    return render_template("auth/forgot_password.html")


@bp.post("/forgot-password")
def forgot_password_post():
    username = (request.form.get("username") or "").strip()
    email = normalize_email(request.form.get("email"))
    user = find_by_username(db_session(), username)
    if not user or normalize_email(user.email) != email:
        flash("No account matches that username and email.", "danger")
        return render_template("auth/forgot_password.html", username=username, email=email), 404
    if not _send_code(PURPOSE_RESET_PASSWORD, email):
        return redirect(url_for("auth.forgot_password_get"))
    flash("Verification code sent. Check your inbox.", "success")
    return redirect(url_for("auth.reset_password_get", email=email))


@bp.get("/reset-password")
def reset_password_get():
    return render_template("auth/reset_password.html", email=(request.args.get("email") or "").strip())


@bp.post("/reset-password")
def reset_password_post():
    email = normalize_email(request.form.get("email"))
    code = request.form.get("code")
    new_password = request.form.get("new_password") or ""

    if not check_code(session, PURPOSE_RESET_PASSWORD, email, code):
        flash("Verification code does not match this email address.", "danger")
        return render_template("auth/reset_password.html", email=email), 400

    s = db_session()
    user = find_by_email(s, email)
    if not user:
        flash("No account matches that email.", "danger")
        return render_template("auth/reset_password.html", email=email), 404
    try:
        reset_password(s, user, new_password)
    except ValidationError as e:
        s.rollback()
        flash_error(e)
        return render_template("auth/reset_password.html", email=email), 400
    s.commit()
    consume_code(session, PURPOSE_RESET_PASSWORD, email, code)

    flash("Password updated. Please log in.", "success")
    return redirect(url_for("auth.login_get"))


# ---------- Find login handle ----------
@bp.get("/find-id")
def find_id_get():
    return render_template("auth/find_id.html", email=(request.args.get("email") or "").strip())


@bp.post("/find-id")
def find_id_post():
    email = normalize_email(request.form.get("email"))
    if not find_by_email(db_session(), email):
        flash("No account matches that email.", "danger")
        return render_template("auth/find_id.html", email=email), 404
    if _send_code(PURPOSE_FIND_ID, email):
        flash("Verification code sent. Check your inbox.", "success")
    return redirect(url_for("auth.find_id_get", email=email, sent=1))


@bp.post("/find-id/confirm")
def find_id_confirm():
    email = normalize_email(request.form.get("email"))
    code = request.form.get("code")
    if not consume_code(session, PURPOSE_FIND_ID, email, code):
        flash("Verification code does not match this email address.", "danger")
        return render_template("auth/find_id.html", email=email, sent=1), 400

    user = find_by_email(db_session(), email)
    if not user:
        flash("No account matches that email.", "danger")
        return render_template("auth/find_id.html", email=email), 404
    try:
        _mailer().send(email, "Your username", f"The username registered to this address is: {user.username}")
    except MailError:
        current_app.logger.exception("Username mail failed (request_id=%s)", getattr(g, "request_id", None))
        flash("Could not send the email. Please try again later.", "danger")
        return redirect(url_for("auth.find_id_get", email=email))
    s = db_session()
    record_event(s, actor=None, action="verification.consume", entity_type="User", entity_id=str(user.id), metadata={"purpose": PURPOSE_FIND_ID})
    s.commit()
    flash("We emailed your username to you.", "success")
    return redirect(url_for("auth.login_get"))
