from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitBucket(BaseModel):
    points: int
    window_seconds: int


def _default_rate_limits() -> dict[str, RateLimitBucket]:
    return {
        "auth": RateLimitBucket(points=5, window_seconds=60),
        "password-reset-request": RateLimitBucket(points=3, window_seconds=3600),
    }


class Settings(BaseSettings):
    """
    App settings.

    Notes:
    - Defaults are local and deterministic (SQLite file next to the repo).
    - Every field can be overridden via `APP_*` env vars, e.g. `APP_DB_URL`,
      `APP_COOKIE_SECURE=true`, `APP_RATE_LIMITS='{"auth": {"points": 10, "window_seconds": 60}}'`.
    """

    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    db_url: str | None = None
    security_config_path: str | None = None
    log_level: str = "INFO"

    session_ttl_hours: int = 24 * 30
    super_admin_session_ttl_hours: int = 8
    password_reset_ttl_minutes: int = 60
    impersonation_ttl_minutes: int = 30
    cookie_secure: bool = False

    # Optional bootstrap operator account, created by init_db() when both are set.
    super_admin_email: str | None = None
    super_admin_password: str | None = None

    apm_base_url: str | None = None
    apm_timeout_seconds: float = 10.0

    rate_limits: dict[str, RateLimitBucket] = Field(default_factory=_default_rate_limits)
    # Peers whose X-Forwarded-For / X-Real-IP headers are believed, e.g. ["127.0.0.1"].
    trusted_proxies: list[str] = Field(default_factory=list)

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "app.db"
        return f"sqlite:///{db_path}"

    def resolved_security_config_path(self) -> Path:
        if self.security_config_path:
            return Path(self.security_config_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "security_config.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
