"""
Release phase: apply migrations to DATABASE_URL, then seed the admin account.

  python scripts/release.py
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import command
from alembic.config import Config

from app.docflow.config import load_settings
from scripts import init_db


def alembic_config(database_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def run_release() -> None:
    settings = load_settings()
    if settings.env in ("prod", "production") and settings.database_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL points at SQLite in production; refusing to migrate.")

    print(f"docflow release (ENV={settings.env})", flush=True)
    command.upgrade(alembic_config(settings.database_url), "head")
    print("Migrations at head.", flush=True)
    init_db.seed_only(database_url=settings.database_url)


if __name__ == "__main__":
    run_release()
