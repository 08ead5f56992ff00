"""wafplane configuration system using Pydantic Settings."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WafPlaneConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "WAFPLANE"
    app_version: str = "2.0.0"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite+aiosqlite:///./wafplane.db"

    # Auth
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_algorithm: str = "HS256"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = True

    # Deadlines (seconds)
    request_timeout_seconds: float = 10.0
    store_timeout_seconds: float = 5.0
    cache_timeout_seconds: float = 0.25

    # Bans
    ban_cache_key_prefix: str = "banned_ips"
    bans_default_page_size: int = 50
    bans_max_page_size: int = 500

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        allowed = {"HS256", "HS384", "HS512"}
        if v not in allowed:
            raise ValueError(f"jwt_algorithm must be one of {allowed}")
        return v

    @field_validator("request_timeout_seconds", "store_timeout_seconds", "cache_timeout_seconds")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


def get_config() -> WafPlaneConfig:
    """Factory function to create config instance."""
    return WafPlaneConfig()
