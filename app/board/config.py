import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    upload_folder: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    session_backend: str
    session_ttl_seconds: int
    session_cookie_name: str

    mail_backend: str
    smtp_server: str
    smtp_port: int
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    smtp_timeout: float
    email_from: str

    csrf_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    is_production = env in ("prod", "production")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///board.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        upload_folder=_getenv("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads")),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        session_backend=_getenv("SESSION_BACKEND", "sql" if is_production else "memory"),
        session_ttl_seconds=int(_getenv("SESSION_TTL_SECONDS", str(8 * 3600))),
        session_cookie_name=_getenv("SESSION_COOKIE_NAME", "board_session"),
        mail_backend=_getenv("MAIL_BACKEND", "smtp" if is_production else "log"),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=int(_getenv("SMTP_PORT", "587")),
        smtp_use_tls=_getflag("SMTP_USE_TLS", True),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_timeout=float(_getenv("SMTP_TIMEOUT", "10")),
        email_from=_getenv("EMAIL_FROM", "") or _getenv("SMTP_USERNAME", "") or "no-reply@example.com",
        csrf_enabled=_getflag("CSRF_ENABLED", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "UPLOAD_FOLDER": s.upload_folder,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SESSION_BACKEND": s.session_backend,
        "SESSION_TTL_SECONDS": s.session_ttl_seconds,
        "SESSION_COOKIE_NAME": s.session_cookie_name,
        "MAIL_BACKEND": s.mail_backend,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_TIMEOUT": s.smtp_timeout,
        "EMAIL_FROM": s.email_from,
        "CSRF_ENABLED": s.csrf_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # image uploads (10MB)
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
        "ALLOWED_IMAGE_EXTENSIONS": frozenset({"png", "jpg", "jpeg", "gif", "webp"}),
    }
