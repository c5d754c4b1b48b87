from __future__ import annotations

from contextlib import contextmanager

from app.emslab.db import build_engine, make_sessionmaker, transaction


@contextmanager
def script_session(db_url: str):
    """Commit-or-rollback session for CLI scripts that run outside the Flask app."""
    engine = build_engine(db_url)
    try:
        with transaction(make_sessionmaker(engine)) as s:
            yield s
    finally:
        engine.dispose()
