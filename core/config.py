"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PolicyPulse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. snapshot_db_url -> SNAPSHOT_DB_URL). Type coercion is built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Rejects settings that would make an assessment run misbehave
      rather than letting them surface halfway through a run.

Layer rule: core/ is the kernel. This module may not import from api/,
history/ or cache/.
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("policypulse.config")

# Written into every snapshot as metadata.script_version_tag.
APP_VERSION = "1.4.0"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    # Label recorded in snapshot metadata. Usually the tenant's primary domain.
    tenant_label: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    snapshot_db_url: str = "sqlite:///data/policypulse.db"
    definition_cache_path: str = "data/definitions.db"
    definition_cache_ttl: int = 86400
    # Keep this many snapshots per tenant; older ones are pruned after a save.
    snapshot_retention: int = 30

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    # Empty string -> built-in baseline catalog.
    catalog_path: str = ""
    classify_workers: int = 1
    expiring_soon_days: int = 30

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject values that cannot describe a working run.

        log_level is normalized to upper case so "debug" and "DEBUG" behave
        the same.
        """
        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}.")
        if self.classify_workers < 1:
            raise ValueError("CLASSIFY_WORKERS must be at least 1.")
        if self.snapshot_retention < 1:
            raise ValueError("SNAPSHOT_RETENTION must be at least 1.")
        if self.definition_cache_ttl < 0:
            raise ValueError("DEFINITION_CACHE_TTL must not be negative.")
        if self.expiring_soon_days < 0:
            raise ValueError("EXPIRING_SOON_DAYS must not be negative.")
        if self.debug and self.log_level == "INFO":
            self.log_level = "DEBUG"
            logger.warning("DEBUG is set -- raising log verbosity to DEBUG")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
