"""
Configuration management for cfmirror.

This module loads environment variables (optionally via a .env file) and validates them
using pydantic models. The resulting Settings object is used by the CLI to build the
remote client and locate the synced directory. Per-directory sync state lives in the
Mapping File instead (see space_config).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, EmailStr, Field, HttpUrl, ValidationError, field_validator

LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})
LOG_FORMATS = frozenset({"json", "text"})
BOOL_WORDS = {
    **dict.fromkeys(("1", "true", "t", "yes", "y", "on"), True),
    **dict.fromkeys(("0", "false", "f", "no", "n", "off"), False),
}


class Settings(BaseModel):
    """Runtime configuration derived from environment variables."""

    confluence_base_url: HttpUrl = Field(alias="CONFLUENCE_BASE_URL")
    confluence_email: EmailStr = Field(alias="CONFLUENCE_EMAIL")
    confluence_api_token: str = Field(alias="CONFLUENCE_API_TOKEN", min_length=1)
    sync_directory: Path = Field(alias="SYNC_DIRECTORY", default=Path("."))
    sync_interval_minutes: int = Field(alias="SYNC_INTERVAL_MINUTES", default=60, ge=1)
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")
    log_format: str = Field(alias="LOG_FORMAT", default="text")
    dry_run: bool = Field(alias="DRY_RUN", default=False)

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def base_url(self) -> str:
        return str(self.confluence_base_url).rstrip("/")

    @field_validator("log_level", mode="after")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(sorted(LOG_LEVELS))}")
        return level

    @field_validator("log_format", mode="after")
    @classmethod
    def normalize_log_format(cls, value: str) -> str:
        fmt = value.strip().lower()
        if fmt not in LOG_FORMATS:
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return fmt

    @field_validator("dry_run", mode="before")
    @classmethod
    def parse_bool(cls, value: str | bool) -> bool:
        if isinstance(value, bool):
            return value
        flag = BOOL_WORDS.get(value.strip().lower())
        if flag is None:
            raise ValueError("DRY_RUN must be a boolean-like value (true/false)")
        return flag

    @field_validator("sync_directory", mode="after")
    @classmethod
    def absolute_sync_directory(cls, value: Path) -> Path:
        return value.expanduser().resolve()


def _find_env_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Pick the .env file to load: the explicit one (which must exist) or ./.env."""
    if explicit_path is not None:
        if not explicit_path.exists():
            raise FileNotFoundError(f"Explicit .env file not found: {explicit_path}")
        return explicit_path
    candidate = Path(".env")
    return candidate if candidate.exists() else None


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load and validate configuration from environment variables.

    Parameters
    ----------
    env_file:
        Path to a .env file. If omitted, `.env` in the working directory is used when present.

    Returns
    -------
    Settings
        Validated configuration object.

    Raises
    ------
    RuntimeError
        If required environment variables are missing.
    ValidationError
        If a value is present but invalid.
    FileNotFoundError
        If SYNC_DIRECTORY does not exist.
    """
    env_path = _find_env_file(env_file)
    if env_path:
        load_dotenv(env_path, override=False)

    try:
        settings = Settings.model_validate(os.environ)
    except ValidationError as exc:
        missing = {err["loc"][0] for err in exc.errors() if err["type"] == "missing"}
        if missing:
            missing_env = ", ".join(sorted(str(name) for name in missing))
            raise RuntimeError(
                f"Invalid configuration. Missing environment variables: {missing_env}."
            ) from exc
        raise

    if not settings.sync_directory.exists():
        raise FileNotFoundError(f"SYNC_DIRECTORY does not exist: {settings.sync_directory}")

    return settings
