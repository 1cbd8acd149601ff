"""Centralized configuration for resource-search using Pydantic Settings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from resource_search.text import SUGGESTION_MAX_LENGTH


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Every variable is prefixed with ``RESOURCE_SEARCH_`` and validated at
    startup, e.g. ``RESOURCE_SEARCH_DATABASE_PATH=/data/repository.db``.
    """

    model_config = SettingsConfigDict(
        env_prefix="RESOURCE_SEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Store
    database_path: Path = Field(default=Path("repository.db"), description="SQLite database of the repository")
    busy_timeout_ms: int = Field(default=30000, ge=0, description="SQLite busy timeout for concurrent workers")

    # Jobs
    batch_size: int = Field(default=100, ge=1, description="Resources per batch of the resource indexing job")
    suggestion_batch_size: int = Field(
        default=1000, ge=1, description="Values read per batch while indexing suggestions"
    )

    # Querying
    default_per_page: int = Field(default=25, ge=1, description="Page size when a query sets none")
    default_facet_limit: int = Field(default=10, ge=0, description="Facet values kept when a facet sets no limit")
    suggestion_max_length: int = Field(
        default=SUGGESTION_MAX_LENGTH,
        ge=2,
        le=SUGGESTION_MAX_LENGTH,
        description="Maximum number of characters of a stored suggestion",
    )

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    # Tracing
    trace_console: bool = Field(default=False, description="Print finished OpenTelemetry spans to stdout")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {value}")
        return normalized.lower()
