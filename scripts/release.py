"""
Release phase: migrate the schema to head, then seed the plan catalogue and the
bootstrap admin. Safe to run on every deploy.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    url = (os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL must be set for the release phase.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("Refusing to migrate a sqlite database in production; point DATABASE_URL at Postgres.")
    return url


def migrate(db_url: str, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    print(f"Upgrading schema to {revision}...", flush=True)
    command.upgrade(cfg, revision)


def run_release() -> None:
    db_url = _database_url()
    print(f"=== ANETI release (ENV={os.environ.get('ENV') or 'unset'}) ===", flush=True)
    migrate(db_url)

    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== ANETI release done ===", flush=True)


if __name__ == "__main__":
    run_release()
