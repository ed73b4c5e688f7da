from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


class MailError(RuntimeError):
    pass


@dataclass(frozen=True)
class SentMail:
    to: str
    subject: str
    body: str


class Mailer:
    def send(self, to: str, subject: str, body: str) -> None:
        raise NotImplementedError


@dataclass
class MemoryMailer(Mailer):
    """Keeps every message in `outbox`; used by tests."""

    outbox: list[SentMail] = field(default_factory=list)

    def send(self, to: str, subject: str, body: str) -> None:
        self.outbox.append(SentMail(to=to, subject=subject, body=body))


class LogMailer(Mailer):
    """Development backend: writes the message to the log instead of delivering it."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("[mail] to=%s subject=%s\n%s", to, subject, body)


@dataclass(frozen=True)
class SmtpMailer(Mailer):
    server: str
    port: int
    use_tls: bool
    username: str
    password: str
    email_from: str
    timeout: float = 10.0

    def send(self, to: str, subject: str, body: str) -> None:
        if not self.server:
            raise MailError("SMTP server not configured (SMTP_SERVER environment variable missing)")

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = to

        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as conn:
                if self.use_tls:
                    conn.starttls()
                if self.username and self.password:
                    conn.login(self.username, self.password)
                conn.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise MailError(f"SMTP authentication failed: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(f"SMTP error: {e}") from e
        logger.info("Sent email to %s with subject: %s", to, subject)


def mailer_from_config(config: dict) -> Mailer:
    backend = (config.get("MAIL_BACKEND") or "log").strip().lower()
    if backend == "smtp":
        return SmtpMailer(
            server=(config.get("SMTP_SERVER") or "").strip(),
            port=int(config.get("SMTP_PORT") or 587),
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
            username=(config.get("SMTP_USERNAME") or "").strip(),
            password=(config.get("SMTP_PASSWORD") or "").strip(),
            email_from=(config.get("EMAIL_FROM") or "no-reply@example.com").strip(),
            timeout=float(config.get("SMTP_TIMEOUT") or 10),
        )
    if backend == "memory":
        return MemoryMailer()
    return LogMailer()
