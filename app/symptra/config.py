"""Runtime settings for the Symptra diagnosis service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("SYMPTRA_APP_NAME", "symptra-api"))

    gemini_api_key: str | None = field(
        default_factory=lambda: _first_env(
            "GEMINI_API_KEY",
            "GOOGLE_API_KEY",
        )
    )
    # Two model tiers; the router escalates complex requests.
    baseline_model: str = field(
        default_factory=lambda: os.getenv("SYMPTRA_BASELINE_MODEL", "gemini-3-flash-preview")
    )
    escalated_model: str = field(
        default_factory=lambda: os.getenv("SYMPTRA_ESCALATED_MODEL", "gemini-3.1-pro-preview")
    )
    model_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("SYMPTRA_MODEL_TIMEOUT_SEC", "25"))
    )
    request_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("SYMPTRA_REQUEST_TIMEOUT_SEC", "15"))
    )

    # Response cache
    cache_ttl_sec: float = field(
        default_factory=lambda: float(os.getenv("SYMPTRA_CACHE_TTL_SEC", str(6 * 60 * 60)))
    )
    cache_max_entries: int = field(
        default_factory=lambda: int(os.getenv("SYMPTRA_CACHE_MAX_ENTRIES", "1024"))
    )
    audit_cache_hits: bool = field(
        default_factory=lambda: _as_bool(os.getenv("SYMPTRA_AUDIT_CACHE_HITS"), default=False)
    )

    # Persistence
    db_path: str = field(default_factory=lambda: os.getenv("SYMPTRA_DB_PATH", "diagnosis_history.db"))

    # Identity
    firebase_api_key: str | None = field(default_factory=lambda: _first_env("FIREBASE_API_KEY"))
    admin_emails: tuple[str, ...] = field(default_factory=lambda: _as_list(os.getenv("ADMIN_EMAILS")))

    # Google Fit OAuth client, used to refresh expired access tokens.
    google_client_id: str | None = field(default_factory=lambda: _first_env("GOOGLE_CLIENT_ID"))
    google_client_secret: str | None = field(default_factory=lambda: _first_env("GOOGLE_CLIENT_SECRET"))

    allowed_origins: tuple[str, ...] = field(
        default_factory=lambda: _as_list(os.getenv("ALLOWED_ORIGINS")) or ("*",)
    )

    # Per-client-IP limit on /api/* routes.
    rate_limit_enabled: bool = field(
        default_factory=lambda: _as_bool(os.getenv("SYMPTRA_RATE_LIMIT_ENABLED"), default=True)
    )
    rate_limit_max: int = field(default_factory=lambda: int(os.getenv("SYMPTRA_RATE_LIMIT_MAX", "100")))
    rate_limit_window_sec: int = field(
        default_factory=lambda: int(os.getenv("SYMPTRA_RATE_LIMIT_WINDOW_SEC", str(15 * 60)))
    )

    @property
    def rate_limit(self) -> str:
        return f"{self.rate_limit_max} per {self.rate_limit_window_sec} seconds"


def get_settings() -> Settings:
    return Settings()
