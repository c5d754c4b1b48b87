import os
from dataclasses import dataclass
from datetime import timedelta

S3_REQUIRED_KEYS = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    # accounts
    session_hours: int
    login_rate_limit: int
    login_rate_window_seconds: int

    # station documents
    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    max_upload_mb: int

    # dashboard
    upcoming_lab_days: int

    @property
    def is_production(self) -> bool:
        return self.env in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a whole number, got {raw!r}.") from None
    if value < 1:
        raise RuntimeError(f"{name} must be at least 1, got {value}.")
    return value


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development").lower(),
        database_url=_getenv("DATABASE_URL", "sqlite:///emslab.db"),
        session_hours=_getint("SESSION_HOURS", 8),
        login_rate_limit=_getint("LOGIN_RATE_LIMIT", 5),
        login_rate_window_seconds=_getint("LOGIN_RATE_WINDOW_SECONDS", 300),
        storage_backend=_getenv("STORAGE_BACKEND", "local").lower(),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", "storage"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        max_upload_mb=_getint("MAX_UPLOAD_MB", 25),
        upcoming_lab_days=_getint("UPCOMING_LAB_DAYS", 14),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "IS_PRODUCTION": s.is_production,
        "DATABASE_URL": s.database_url,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW_SECONDS": s.login_rate_window_seconds,
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=s.session_hours),
        "SESSION_REFRESH_EACH_REQUEST": True,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "UPCOMING_LAB_DAYS": s.upcoming_lab_days,
        # test clients post forms without a rendered token
        "CSRF_ENABLED": s.env != "test",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
        # roster spreadsheets and station handouts
        "MAX_UPLOAD_MB": s.max_upload_mb,
        "MAX_CONTENT_LENGTH": s.max_upload_mb * 1024 * 1024,
    }


def missing_s3_settings(config: dict) -> list[str]:
    if (config.get("STORAGE_BACKEND") or "local") != "s3":
        return []
    return [key for key in S3_REQUIRED_KEYS if not config.get(key)]


def production_problems(config: dict) -> list[str]:
    """Settings that must not reach a production boot."""
    if not config.get("IS_PRODUCTION"):
        return []
    problems = []
    db_url = str(config.get("DATABASE_URL") or "")
    if db_url.startswith("sqlite"):
        problems.append("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(config.get("SECRET_KEY") or "") in ("", "change-me"):
        problems.append("SECRET_KEY must be set to a strong value in production (not default).")
    return problems
