"""FileTrace configuration settings.

FileTraceSettings is the single configuration object accepted by
create_app().  It is a plain dataclass (not env-coupled) so tests can
inject config without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

VALID_ENVIRONMENTS = frozenset({"local", "dev", "staging", "production"})
VALID_LOG_FORMATS = frozenset({"json", "console"})
MIN_JWT_SECRET_LENGTH = 32
DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)


@dataclass(frozen=True, slots=True)
class FileTraceSettings:
    """Configuration for the FileTrace FastAPI application.

    All fields have defaults for local development, where every backend
    is in-memory.  Non-local environments must point at Supabase.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    """Supabase project URL (e.g. https://xyz.supabase.co)."""

    supabase_service_role_key: str = ""
    """Service-role key for PostgREST and Storage calls. Never log this."""

    storage_bucket: str = "files"
    """Supabase Storage bucket holding file payloads."""

    # ── Auth ───────────────────────────────────────────────────────
    jwt_secret: str = ""
    """HS256 secret for access tokens. Empty means Supabase JWKS (RS256)."""

    # ── HTTP ───────────────────────────────────────────────────────
    public_url: str = "http://localhost:8000"
    """Base URL used to build share links."""

    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.environment not in VALID_ENVIRONMENTS:
            errors.append(
                f"environment must be one of {sorted(VALID_ENVIRONMENTS)}, "
                f"got {self.environment!r}"
            )
        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(f"log_format must be one of {sorted(VALID_LOG_FORMATS)}")
        if not self.public_url.startswith(("http://", "https://")):
            errors.append("public_url must be an http(s) URL")
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
            if not self.storage_bucket:
                errors.append(f"{self.environment}: storage_bucket is required")
            if self.jwt_secret and len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
                errors.append(
                    f"{self.environment}: jwt_secret must be >= "
                    f"{MIN_JWT_SECRET_LENGTH} characters"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> FileTraceSettings:
        """Build settings from environment variables.

        Tests should construct FileTraceSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            storage_bucket=env.get("STORAGE_BUCKET", "files"),
            jwt_secret=env.get("JWT_SECRET", ""),
            public_url=env.get("PUBLIC_URL", "http://localhost:8000").rstrip("/"),
            cors_origins=cors,
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "json"),
        )
