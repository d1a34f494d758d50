from __future__ import annotations

import os
from pathlib import Path

DEFAULT_SCOPES = (
    "data.records:read data.records:write "
    "data.recordComments:read data.recordComments:write "
    "schema.bases:read schema.bases:write webhook:manage"
)
FALLBACK_JWT_SECRET = "fallback-secret-key"


class Settings:
    def __init__(self) -> None:
        self.storage_backend = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        self.sqlite_path = Path(os.getenv("SQLITE_PATH", "./data/app.db"))
        self.json_path = Path(os.getenv("JSON_PATH", "./data/jsonstore.json"))

        self.airtable_client_id = os.getenv("AIRTABLE_CLIENT_ID", "")
        self.airtable_client_secret = os.getenv("AIRTABLE_CLIENT_SECRET", "")
        self.airtable_redirect_uri = os.getenv(
            "AIRTABLE_REDIRECT_URI",
            "http://localhost:8000/api/auth/airtable/callback",
        )
        self.airtable_scopes = os.getenv("AIRTABLE_SCOPES", DEFAULT_SCOPES)

        self.jwt_secret = os.getenv("JWT_SECRET") or FALLBACK_JWT_SECRET
        self.session_ttl_days = _int_env("SESSION_TTL_DAYS", 7)
        self.frontend_url = os.getenv("FRONTEND_URL", "http://localhost:8080").rstrip("/")
        self.http_timeout = float(os.getenv("HTTP_TIMEOUT", "10") or 10)
        self.cors_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = _int_env("PORT", 8000)

    @property
    def uses_fallback_secret(self) -> bool:
        return self.jwt_secret == FALLBACK_JWT_SECRET


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def ensure_dirs(settings: Settings) -> None:
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    settings.json_path.parent.mkdir(parents=True, exist_ok=True)
