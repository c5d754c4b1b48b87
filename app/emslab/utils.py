from __future__ import annotations

import hashlib
import re
from datetime import date, time

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_text(s: str | None) -> str:
    return (s or "").strip()


def optional_text(s: str | None) -> str | None:
    return normalize_text(s) or None


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.fullmatch(normalize_text(email)))


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string (blank -> None, bad format -> ValueError)."""
    if s is not None and not isinstance(s, str):
        raise TypeError(f"expected a date string, got {type(s).__name__}")
    s = normalize_text(s)
    if not s:
        return None
    return date.fromisoformat(s)


def parse_time(s: str | None) -> time | None:
    """Parse HH:MM (or HH:MM:SS) time string."""
    if s is not None and not isinstance(s, str):
        raise TypeError(f"expected a time string, got {type(s).__name__}")
    s = normalize_text(s)
    if not s:
        return None
    return time.fromisoformat(s)


def parse_int(s: str | int | None) -> int | None:
    if isinstance(s, int):
        return s
    if s is not None and not isinstance(s, str):
        raise TypeError(f"expected an integer, got {type(s).__name__}")
    s = normalize_text(s)
    if not s:
        return None
    return int(s)


def parse_bool(s: str | bool | None) -> bool:
    if isinstance(s, bool):
        return s
    return normalize_text(s).lower() in ("1", "true", "yes", "on")


def split_list(s: str | list[str] | None) -> list[str]:
    """Split a newline/semicolon separated form field into a clean list."""
    if s is None:
        return []
    if isinstance(s, list):
        return [normalize_text(x) for x in s if normalize_text(x)]
    parts = re.split(r"[\n;]", s)
    return [p.strip() for p in parts if p.strip()]


def file_digest_and_size(file_bytes: bytes) -> tuple[str, int]:
    """Compute SHA256 digest and size."""
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def human_join(names: list[str]) -> str:
    """'A', 'A and B', 'A, B, and C'."""
    if not names:
        return ""
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{', '.join(names[:-1])}, and {names[-1]}"
