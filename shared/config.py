"""
Shared configuration management for the Datasets Access Layer.

Settings are read from the process environment (case-insensitive) and an
optional ``.env`` file, so ``CACHE_MAX_ENTRIES`` populates ``cache_max_entries``.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RAW_BASE = "https://raw.githubusercontent.com"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("env", "node_env"))
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 3000


class DatasetsConfig(BaseConfig):
    """Configuration consumed by the origin-fetch caching layer."""

    # Cache
    cache_max_entries: int = Field(default=500, gt=0)
    manifest_ttl_seconds: float = Field(default=60, ge=0)
    data_ttl_seconds: float = Field(default=300, ge=0)

    # Origin (owner and repo are validated when the origin client is built)
    raw_base: str = DEFAULT_RAW_BASE
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: str = "main"
    origin_timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


def get_config(**overrides) -> DatasetsConfig:
    """Load configuration from the environment, applying explicit overrides."""
    return DatasetsConfig(**overrides)
