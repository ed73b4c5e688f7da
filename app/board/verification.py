"""
Email verification codes, kept in the user's session.

Per purpose the state moves NoCode -> CodeIssued(code, email) -> Consumed:
- issue_code() generates a 6-digit code, stores it with the email and mails it.
  Issuing again overwrites the pending code.
- check_code() compares the trimmed code and the lowercased email against the
  pending entry without changing it.
- consume_code() does the same check; a match removes the entry, a mismatch
  leaves it in place.

Codes do not expire on their own and issuance is not rate-limited; a pending
code lives until it is consumed, overwritten, or the session ends.
"""
from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import MutableMapping
from typing import Any

from app.board.mailer import Mailer

logger = logging.getLogger(__name__)

SESSION_KEY = "verification"
CODE_LENGTH = 6

PURPOSE_REGISTER = "register"
PURPOSE_RESET_PASSWORD = "reset_password"
PURPOSE_FIND_ID = "find_id"
PURPOSES = (PURPOSE_REGISTER, PURPOSE_RESET_PASSWORD, PURPOSE_FIND_ID)

_SUBJECTS = {
    PURPOSE_REGISTER: "Your sign-up verification code",
    PURPOSE_RESET_PASSWORD: "Your password reset code",
    PURPOSE_FIND_ID: "Your account lookup code",
}


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def pending_code(session: MutableMapping[str, Any], purpose: str) -> dict[str, str] | None:
    return (session.get(SESSION_KEY) or {}).get(purpose)


def issue_code(session: MutableMapping[str, Any], purpose: str, email: str, mailer: Mailer) -> str:
    if purpose not in PURPOSES:
        raise ValueError(f"Unknown verification purpose: {purpose}")
    email = normalize_email(email)
    code = generate_code()
    mailer.send(
        email,
        _SUBJECTS[purpose],
        f"Your verification code is {code}.\n\nIf you did not request this, you can ignore this email.",
    )
    # Reassign instead of mutating in place so the session notices the change.
    pending = dict(session.get(SESSION_KEY) or {})
    pending[purpose] = {"code": code, "email": email}
    session[SESSION_KEY] = pending
    logger.info("Issued %s verification code to %s", purpose, email)
    return code


def check_code(session: MutableMapping[str, Any], purpose: str, email: str | None, code: str | None) -> bool:
    """True when (code, email) matches the pending entry; never changes state."""
    entry = pending_code(session, purpose)
    if not entry:
        return False
    submitted = (code or "").strip()
    if not submitted or normalize_email(email) != entry.get("email"):
        return False
    return hmac.compare_digest(submitted.encode("utf-8"), entry.get("code", "").encode("utf-8"))


def consume_code(session: MutableMapping[str, Any], purpose: str, email: str | None, code: str | None) -> bool:
    if not check_code(session, purpose, email, code):
        return False
    pending = dict(session.get(SESSION_KEY) or {})
    pending.pop(purpose, None)
    session[SESSION_KEY] = pending
    return True
