"""
Settings.

Where the two databases live, how large rebuild batches are, and how
logs are written.  Values come from the environment, then ``.env``, then
the defaults below.  Services receive an :class:`AppConfig` through their
constructor; only the entry point and the logger call :func:`get_config`.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Every tunable of the indexer, the stores and logging."""

    # --- Relational source ---
    SQLITE_PATH: Path = Path("usersearch.db")

    # --- Document store ---
    INDEX_PATH: Path = Path("usersearch_index.db")

    # --- Indexing ---
    # Rows read from ``users`` and written to the store per round trip
    # during a full rebuild.
    INDEX_BATCH_SIZE: int = Field(default=500, ge=1)

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "usersearch.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when no ``.env`` file is present.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        which means both databases land in the working directory.
        """
        _log = logging.getLogger("usersearch.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "the environment or defaults."
            )

        if self.SQLITE_PATH == self.INDEX_PATH:
            _log.warning(
                "SQLITE_PATH and INDEX_PATH point to the same file (%s); "
                "users and documents will share one database.",
                self.SQLITE_PATH,
            )

        return self


_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return the process-wide ``AppConfig``, building it on first use.

    Thread-safe (double-checked under a lock).  Tests call
    :func:`reset_config` to pick up a changed environment.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next ``get_config()`` re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None
