"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for BreachTracker happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. state_db_url -> STATE_DB_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to reject incident code prefixes
      that would produce malformed codes such as "INC-2025--001".

Layer rule: core/ is the kernel. This module may not import from api/,
incidents/, or storage/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("breachtracker.config")

_DEFAULT_STATE_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'storage' / 'breachtracker.db'}"


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

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    state_db_url: str = _DEFAULT_STATE_DB_URL
    # Snapshot row key. Bump the suffix when the snapshot shape changes
    # incompatibly so old snapshots are ignored rather than mis-read.
    state_key: str = "breach-tracker-state-v1"

    # ------------------------------------------------------------------
    # Incident codes
    # ------------------------------------------------------------------

    # Fixed-year prefix; codes are "<prefix>-NNN".
    incident_id_prefix: str = "INC-2025"

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    # False runs every analytics query through the deterministic fallbacks.
    sql_evaluator_enabled: bool = True

    # ------------------------------------------------------------------
    # HTTP API
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_incident_prefix(self) -> "Settings":
        """Normalize and validate INCIDENT_ID_PREFIX.

        Surrounding whitespace is stripped. An empty prefix or one ending in
        "-" is rejected because the code formatter appends "-NNN" itself.
        """
        self.incident_id_prefix = self.incident_id_prefix.strip()
        if not self.incident_id_prefix:
            raise ValueError("INCIDENT_ID_PREFIX must not be empty.")
        if self.incident_id_prefix.endswith("-"):
            raise ValueError("INCIDENT_ID_PREFIX must not end with '-'; the separator is added automatically.")
        if self.debug:
            logger.warning("DEBUG mode enabled -- state database: %s", self.state_db_url)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
