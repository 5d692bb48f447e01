"""
config/settings.py — Canonical configuration contract for the check fleet runner.

Uses pydantic-settings to load, validate, and type-check every tunable of the
engine (throttle capacity, batch width, statement timeout) plus the paths the
command-line tools read from and write to.

Two usage modes:
  Production / CLI:
      cfg = load_settings()              # reads from .env + os.environ
      cfg = load_settings("env/prod.env") # override env file path

  Tests (isolated — no env file, no os.environ bleed):
      cfg = Settings(THROTTLE_CAPACITY=3, BATCH_SIZE=2)
      # All values come exclusively from kwargs → clean, reproducible.
"""
from __future__ import annotations

import os
import re
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    # Settings() reads purely from kwargs. load_settings() is the explicit
    # production entry point that merges the env file and os.environ.
    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Only kwargs. load_settings() supplies env vars explicitly as kwargs.
        return (init_settings,)

    # -------------------------------------------------------------------------
    # Engine sizing
    # -------------------------------------------------------------------------
    THROTTLE_CAPACITY: int = 10
    BATCH_SIZE: int = 5
    STATEMENT_TIMEOUT_SECONDS: int = 30
    CLEANUP_INTERVAL: int = 20

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------
    RUN_MODE: Literal["parallel", "sequential"] = "parallel"

    # -------------------------------------------------------------------------
    # Inputs / outputs
    # -------------------------------------------------------------------------
    CATALOG_PATH: str = "sql-checks.json"
    TARGETS_PATH: Optional[str] = None
    OUTPUT_DIR: str = "build/results"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    LOG_DIR: Optional[str] = None

    # -------------------------------------------------------------------------
    # DuckDB connector
    # -------------------------------------------------------------------------
    DUCKDB_READ_ONLY: bool = True

    # -------------------------------------------------------------------------
    # Convenience properties
    # -------------------------------------------------------------------------

    @property
    def parallel(self) -> bool:
        return self.RUN_MODE == "parallel"

    @property
    def cleanup_enabled(self) -> bool:
        return self.CLEANUP_INTERVAL > 0

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    @field_validator("RUN_MODE", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Strip trailing whitespace left behind by shell-sourced env files."""
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("THROTTLE_CAPACITY", "BATCH_SIZE", "STATEMENT_TIMEOUT_SECONDS")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_cleanup_interval(self) -> Settings:
        if self.CLEANUP_INTERVAL < 0:
            raise ValueError(
                "CLEANUP_INTERVAL must be >= 0 (0 disables periodic cleanup hints)"
            )
        return self


def load_settings(env_file: str = ".env") -> Settings:
    """Load and validate settings from an env file + os.environ.

    Manually parses the env file and merges with os.environ (os.environ wins),
    then passes only known Settings fields as explicit kwargs. The
    pydantic-settings dotenv and env source chain is disabled so that
    Settings() stays a pure validation contract (no implicit env reads).

    Raises:
        ValidationError: if any value is invalid (e.g. RUN_MODE=fast).
    """
    file_vals: dict[str, str] = {}
    try:
        with open(env_file, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                k, _, v = line.partition("=")
                k = k.strip()
                # Strip inline comments: "parallel   # parallel | sequential" → "parallel"
                v = re.sub(r"\s+#.*$", "", v.strip())
                if k:
                    file_vals[k] = v
    except FileNotFoundError:
        pass
    merged = {**file_vals, **os.environ}  # os.environ wins
    known = {k: v for k, v in merged.items() if k in Settings.model_fields}
    return Settings(**known)
