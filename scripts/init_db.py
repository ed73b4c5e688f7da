"""
Create tables directly from the models and optionally seed a demo account.

Local development only; deployed databases are migrated with `alembic upgrade head`
(see scripts/release.py).

Usage:
  python scripts/init_db.py
  DEMO_USERNAME=demo DEMO_PASSWORD=demo1234 python scripts/init_db.py
"""
import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.board.models import Base, User


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Create tables and, when DEMO_USERNAME is set, a demo account (idempotent).
    Does NOT overwrite an existing account's password.
    """
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///board.db").strip()
    demo_username = (os.environ.get("DEMO_USERNAME") or "").strip()

    with _session_scope(db_url) as s:
        if not demo_username:
            return
        if s.query(User).filter(User.username == demo_username).one_or_none():
            print(f"Demo user '{demo_username}' already exists; leaving it unchanged.")
            return
        s.add(
            User(
                username=demo_username,
                display_name=(os.environ.get("DEMO_DISPLAY_NAME") or demo_username).strip(),
                password_hash=generate_password_hash(os.environ.get("DEMO_PASSWORD") or "change-me"),
                email=(os.environ.get("DEMO_EMAIL") or "").strip().lower() or None,
            )
        )
        print(f"Created demo user '{demo_username}'.")


def main() -> None:
    seed_only()
    print("Database ready.")


if __name__ == "__main__":
    main()
