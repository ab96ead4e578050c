"""Schema engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class PlatformEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with SCHEMA_ENGINE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEMA_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: PlatformEnv = PlatformEnv.DEV
    debug: bool = False

    # Logging
    structured_logging: bool = False
    log_level: str = "INFO"

    # Remote query API
    api_base_url: str = "https://api.cloudflare.com/client/v4"
    account_id: str | None = None
    api_token: SecretStr | None = None
    request_timeout: float = 30.0

    # Local execution
    local_db_root: Path | None = None

    # Introspection
    system_table_prefixes: list[str] = ["sqlite_", "_cf_"]
    large_schema_warning_threshold: int = 200

    # Cascade simulation
    max_cascade_depth: int = 10

    # Retry (read-only operations only)
    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_max_delay: float = 60.0

    # Mutation
    serialize_mutations: bool = True

    @field_validator("api_token", mode="before")
    @classmethod
    def mask_token_in_repr(cls, v: str | None) -> SecretStr | None:
        if v is None:
            return None
        if isinstance(v, SecretStr):
            return v
        return SecretStr(v)

    @field_validator("max_cascade_depth")
    @classmethod
    def positive_depth(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_cascade_depth must be at least 1")
        return v

    def is_remote_configured(self) -> bool:
        return self.account_id is not None and self.api_token is not None


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
