"""Configuration models."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are prefixed with SCMBRIDGE_ (e.g., SCMBRIDGE_GIT_COMMAND).
    """

    model_config = SettingsConfigDict(
        env_prefix="SCMBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Executables, resolved on PATH at detection time
    git_command: str = Field("git", description="Git executable name or path")
    fossil_command: str = Field("fossil", description="Fossil executable name or path")

    # Seconds before a spawned tool is killed; None or 0 waits forever
    process_timeout: Optional[float] = Field(
        120.0, description="Timeout in seconds for a single tool invocation"
    )

    # Number of reads a per-file cache entry survives
    file_diff_cache_hits: int = Field(1, description="Cache expiry for single-file diffs")
    file_status_cache_hits: int = Field(1, description="Cache expiry for single-file status")
    blame_cache_hits: int = Field(10, description="Cache expiry for blame results")

    # Logging
    log_level: str = Field("INFO", description="Log level for the command line")
