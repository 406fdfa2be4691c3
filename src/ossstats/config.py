"""Configuration management for ossstats.

Loads tokens and tuning knobs from environment variables using Pydantic.
Secrets belong in .env (never hardcoded).

Usage:
    from ossstats.config import settings

    print(settings.org)
    print(settings.refresh_concurrency)
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ossstats configuration from environment variables.

    Loads from .env file automatically. Validates on instantiation.
    Tokens are optional so the Read API and tests can run without them;
    GitHub refreshes and the on-demand trigger check for them at call time.

    Attributes:
        github_auth_token: GitHub token used for REST calls
        refresh_secret: Bearer secret guarding POST /refresh
        org: npm scope / GitHub organisation to aggregate
        cache_db_path: SQLite file backing the cache store
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR)
        chunk_size_days: Calendar days per download chunk
        mutable_ttl_hours: Lifetime of entries that can still change
        refresh_concurrency: Fetches dispatched per batch
        refresh_batch_delay: Pause between batch dispatches (seconds)
        refresh_budget_seconds: Wall-clock budget of one full refresh
        refresh_interval_hours: Period of the scheduled refresh
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # Credentials (optional, checked where they are needed)
    github_auth_token: str | None = Field(default=None, description="GitHub API token")
    refresh_secret: str | None = Field(
        default=None,
        description="Bearer secret for the on-demand refresh endpoint",
    )

    # System Settings
    org: str = Field(default="tanstack", min_length=1, description="npm scope / GitHub org")
    log_level: str = Field(default="INFO", description="Logging level")
    cache_db_path: str = Field(default="data/stats.db", description="SQLite cache file")
    user_agent: str = Field(default="ossstats", description="User-Agent sent upstream")

    # Caching
    chunk_size_days: int = Field(default=500, ge=1, le=540, description="Days per chunk")
    mutable_ttl_hours: float = Field(default=6.0, gt=0, description="TTL of mutable entries")

    # Refresh scheduling (conservative defaults)
    refresh_concurrency: int = Field(default=8, ge=1, le=50, description="Fetches per batch")
    refresh_batch_delay: float = Field(default=0.5, ge=0, description="Seconds between batches")
    refresh_budget_seconds: float = Field(default=900.0, gt=0, description="Run budget (s)")
    refresh_interval_hours: float = Field(default=6.0, gt=0, description="Schedule period")

    # Rate Limiting / retries
    npm_rate_limit: int = Field(default=10, ge=1, description="npm requests/second")
    github_rate_limit: int = Field(default=5, ge=1, description="GitHub requests/second")
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries per request")
    backoff_base: float = Field(default=1.0, ge=0, description="Initial backoff (s)")

    # Server
    host: str = Field(default="127.0.0.1", description="HTTP bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="HTTP port")
    enable_scheduler: bool = Field(default=True, description="Run the 6-hourly refresh in-process")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"log_level must be one of {valid}, got {v}")
        return v_upper

    @field_validator("org")
    @classmethod
    def validate_org(cls, v: str) -> str:
        """Strip a leading '@' so 'tanstack' and '@tanstack' are equivalent."""
        return v.lstrip("@").lower()

    @field_validator("github_auth_token", "refresh_secret")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat empty or placeholder secrets as unconfigured."""
        if v is None:
            return None
        v = v.strip()
        if not v or v == "USE_A_REAL_KEY_IN_PRODUCTION":
            return None
        return v


# Global settings instance, loaded once at import
settings = Settings()
