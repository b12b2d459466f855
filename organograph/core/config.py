"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
import logging

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Organograph settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "Organograph"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ── Neo4j ────────────────────────────────────────────────────
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = Field(
        default="neo4j",
        validation_alias=AliasChoices("neo4j_user", "neo4j_username"),
    )
    neo4j_password: str = "neo4j_dev_password"
    neo4j_database: str = "neo4j"
    neo4j_query_timeout_seconds: float = Field(default=30.0, gt=0)
    neo4j_max_connection_pool_size: int = Field(default=50, ge=1)

    # ── Query limits ─────────────────────────────────────────────
    max_page_size: int = Field(default=1000, ge=1)
    max_path_depth: int = Field(default=6, ge=1)
    max_path_results: int = Field(default=10, ge=1)
    default_search_limit: int = Field(default=50, ge=1)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise the log level and reject names logging does not know."""
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
