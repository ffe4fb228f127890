import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.aneti.models import User  # noqa: E402
from app.aneti.modules.membership_plans.service import seed_default_plans  # noqa: E402


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def ensure_admin(s: Session, email: str, password: str, *, username: str = "admin") -> User:
    """
    Create the bootstrap admin if missing; promote an existing account to admin.
    Never overwrites an existing password.
    """
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        taken = s.query(User).filter(User.username == username).one_or_none()
        user = User(
            email=email,
            username=username if taken is None else email.split("@", 1)[0],
            password_hash=generate_password_hash(password),
            full_name="Administrador ANETI",
            role="admin",
            is_approved=True,
            is_active=True,
        )
        s.add(user)
    else:
        user.role = "admin"
        user.is_active = True
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the default membership plans and the bootstrap admin (idempotent).
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@aneti.org.br").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///aneti.db").strip()

    # Direct engine/session so release can run this without importing app.wsgi.
    with _session_scope(db_url) as s:
        created = seed_default_plans(s)
        ensure_admin(s, admin_email, admin_password)

    print("Initialized database (seed_only).")
    print(f"Plans created: {created}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
