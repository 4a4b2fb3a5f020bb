# logstore/core/config.py
"""
Central configuration for the log store.

This module defines a single `settings` object (Pydantic BaseSettings) that reads
configuration from environment variables and a local `.env` file.

Components (store, tracker, pipeline) take explicit constructor arguments and
only fall back to `settings` when the caller does not pass a value.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables and optional `.env`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # deployment environments often add extra env vars
        case_sensitive=False,
    )

    # -----------------------
    # Runtime
    # -----------------------
    ENV: str = Field(default="dev", description="Environment: dev|test|prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level (e.g., INFO, DEBUG)")

    # -----------------------
    # Database
    # -----------------------
    DATABASE_URL: str = Field(
        default="sqlite:///./data/logs.db",
        description="SQLAlchemy database URL",
    )
    DB_BUSY_TIMEOUT_MS: int = Field(
        default=30_000,
        ge=0,
        description="How long a SQLite writer waits for a lock before failing",
    )
    SCAN_BATCH_SIZE: int = Field(
        default=500,
        ge=1,
        le=100_000,
        description="Rows fetched per round trip in streamed scans",
    )

    # -----------------------
    # Ingestion
    # -----------------------
    START_LINE_NO: int = Field(
        default=1,
        ge=0,
        description="Line number assigned to the first line of a file",
    )
    PARSE_ERROR_POLICY: str = Field(
        default="skip",
        description="What to do with a malformed line: skip|halt",
    )
    INGEST_WORKERS: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Worker threads for multi-file ingestion",
    )
    REQUEST_MESSAGE: str = Field(
        default="handled request",
        description="Caddy `msg` value that marks an access-log entry",
    )

    # -----------------------
    # Upload limits
    # -----------------------
    MAX_UPLOAD_MB: int = Field(
        default=25,
        ge=1,
        le=500,
        description="Max upload size in megabytes for log files",
    )

    @property
    def MAX_UPLOAD_BYTES(self) -> int:
        """Derived upload size limit in bytes."""
        return int(self.MAX_UPLOAD_MB) * 1024 * 1024

    # -----------------------
    # Validators / normalizers
    # -----------------------
    @field_validator("ENV")
    @classmethod
    def _normalize_env(cls, v: str) -> str:
        return (v or "dev").strip().lower()

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()

    @field_validator("PARSE_ERROR_POLICY")
    @classmethod
    def _check_policy(cls, v: str) -> str:
        policy = (v or "skip").strip().lower()
        if policy not in ("skip", "halt"):
            raise ValueError("PARSE_ERROR_POLICY must be 'skip' or 'halt'")
        return policy

    @field_validator("DATABASE_URL", "REQUEST_MESSAGE")
    @classmethod
    def _strip_strings(cls, v: str) -> str:
        return (v or "").strip()


# Singleton instance imported across the codebase.
settings = Settings()
