"""
Runtime configuration.

Everything the service needs from its environment is read once, at app
creation, into a frozen `Settings` object. That object is then handed to
whatever needs it (the app factory, the CLI, tests) instead of being read
from `os.environ` deep inside request code.

Environment variables
---------------------
DATABASE_URL            SQLAlchemy URL (default: sqlite:///recollect.db)
JWT_SECRET              HMAC key for session tokens
MAX_UPLOAD_SIZE         upload ceiling in bytes (default: 100 MiB)
STORAGE_BACKEND         "local" or "gcs" (default: local)
MEDIA_ROOT              directory for the local blob store
GCS_BUCKET / GCS_PREFIX bucket and key prefix for the GCS blob store
SITE_NAME / SITE_URL    used by sitemap.xml / robots.txt
ENVIRONMENT             "development" exposes internal error messages
LOG_LEVEL               root log level (default: INFO)
DELETE_BLOBS_ON_DELETE  remove media blobs when items are deleted
SESSION_TTL_SECONDS     lifetime of login sessions (default: 7 days)
CORS_ORIGINS            comma-separated browser origins allowed to call the API
                        (default: *)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_MAX_UPLOAD_SIZE = 100 * 1024 * 1024
DEFAULT_SESSION_TTL = 7 * 24 * 60 * 60


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable service configuration."""

    database_url: str = "sqlite:///recollect.db"
    jwt_secret: str = "change-this-secret-key"
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    storage_backend: str = "local"
    media_root: str = "media"
    gcs_bucket: str | None = None
    gcs_prefix: str = "media/"
    site_name: str = "My Digital Collection"
    site_url: str | None = None
    environment: str = "production"
    log_level: str = "INFO"
    delete_blobs_on_delete: bool = True
    session_ttl_seconds: int = DEFAULT_SESSION_TTL
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load configuration from environment variables."""
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///recollect.db"),
            jwt_secret=os.getenv("JWT_SECRET", "change-this-secret-key"),
            max_upload_size=int(os.getenv("MAX_UPLOAD_SIZE", str(DEFAULT_MAX_UPLOAD_SIZE))),
            storage_backend=os.getenv("STORAGE_BACKEND", "local").lower(),
            media_root=os.getenv("MEDIA_ROOT", "media"),
            gcs_bucket=os.getenv("GCS_BUCKET"),
            gcs_prefix=os.getenv("GCS_PREFIX", "media/"),
            site_name=os.getenv("SITE_NAME", "My Digital Collection"),
            site_url=os.getenv("SITE_URL"),
            environment=os.getenv("ENVIRONMENT", "production").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            delete_blobs_on_delete=_env_bool("DELETE_BLOBS_ON_DELETE", True),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(DEFAULT_SESSION_TTL))),
            cors_origins=_env_list("CORS_ORIGINS", "*"),
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def configure_logging(level: str = "INFO") -> None:
    """
    Set up root logging once per process.

    Cloud Run (and gunicorn) capture stdout/stderr, so a plain stream
    handler with a compact format is all we need.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
