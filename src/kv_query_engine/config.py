"""Centralized configuration for kv-query-engine using Pydantic Settings."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    All environment variables are validated at startup with proper types.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",  # Ignore extra env vars not defined in model
    )

    # Storage
    store_backend: Literal["memory", "sqlite"] = Field(
        default="memory", description="Primitive key-value store implementation"
    )
    sqlite_path: str = Field(default="", description="Database file used when store_backend is sqlite")
    type_registry_path: str = Field(
        default="", description="JSON file with type configurations; empty uses the built-in types"
    )

    # Query limits
    default_query_limit: int = Field(default=50, ge=1, description="Page size when a query sets no limit")
    max_query_limit: int = Field(default=200, ge=1, description="Upper clamp for a query page size")
    scan_page_size: int = Field(
        default=1000, ge=1, le=1000, description="Keys requested per store list call during index scans"
    )
    max_scan_keys: int = Field(
        default=10000, ge=1, description="Safety cap on keys collected by one complete-candidate scan"
    )

    # Bulk
    bulk_max_items: int = Field(default=100, ge=1, description="Maximum items accepted by one bulk operation")

    # Ranking
    ranking_half_life_days: float = Field(
        default=30.0, gt=0, description="Age in days at which the search recency bonus halves"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root log level"
    )
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    @model_validator(mode="after")
    def _check_store_settings(self) -> "Settings":
        if self.store_backend == "sqlite" and not self.sqlite_path:
            raise ValueError("SQLITE_PATH must be set when STORE_BACKEND is sqlite")
        if self.default_query_limit > self.max_query_limit:
            raise ValueError("DEFAULT_QUERY_LIMIT cannot exceed MAX_QUERY_LIMIT")
        return self
