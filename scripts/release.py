"""
Release step: migrate the database to head, then seed reference data.

Refuses to run without DATABASE_URL, and refuses sqlite or a default
SECRET_KEY when ENV is production. Seeding is idempotent and never resets an
existing admin password.

Usage:
  python scripts/release.py
  python scripts/release.py --check        # print current vs head revision, change nothing
  python scripts/release.py --skip-seed
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from app.emslab.config import load_config, production_problems
from app.emslab.db import build_engine


def alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def revisions(cfg: Config, db_url: str) -> tuple[str | None, str | None]:
    """(database revision, head revision)"""
    head = ScriptDirectory.from_config(cfg).get_current_head()
    engine = build_engine(db_url)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()
    return current, head


def run_release(*, check: bool = False, seed: bool = True) -> int:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        print("ERROR: DATABASE_URL is not set.", file=sys.stderr, flush=True)
        return 2
    problems = production_problems(load_config())
    if problems:
        for p in problems:
            print(f"ERROR: {p}", file=sys.stderr, flush=True)
        return 2

    cfg = alembic_config(db_url)
    current, head = revisions(cfg, db_url)
    print(f"Schema revision: {current or '(empty database)'}; head: {head}", flush=True)
    if check:
        return 0 if current == head else 1

    if current != head:
        print("Running Alembic migrations...", flush=True)
        command.upgrade(cfg, "head")
        print("Migrations complete.", flush=True)

    if seed:
        from scripts import init_db

        print("Seeding roles, programs, medications and admin account...", flush=True)
        init_db.seed_only(database_url=db_url)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Migrate and seed the EMS lab database.")
    p.add_argument("--check", action="store_true", help="Only report whether migrations are pending (exit 1 if so)")
    p.add_argument("--skip-seed", action="store_true", help="Migrate without seeding reference data")
    args = p.parse_args(argv)
    return run_release(check=args.check, seed=not args.skip_seed)


if __name__ == "__main__":
    sys.exit(main())
