"""
netledger Configuration

Pydantic-backed configuration loaded from environment variables.
Uses NETLEDGER_ prefix for all environment variables.
"""

import os
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from netledger.errors import ConfigError


class Config(BaseModel):
    """
    Pydantic-backed configuration loaded from environment variables.

    Key env vars:
    - NETLEDGER_DB_URL (preferred) or NETLEDGER_DB_PATH for SQLite fallback.
    - NETLEDGER_ENV (default: local)
    - NETLEDGER_LOG_LEVEL (default: INFO)
    - NETLEDGER_DEFAULT_MIME_TYPE (default: text/markdown)
    - NETLEDGER_DIFF_CONTEXT_LINES (default: 3)
    """

    # Database
    db_url: Optional[str] = Field(default=None)
    db_path: Path = Field(default=Path(".netledger.sqlite"))
    db_pool_size: int = Field(default=5, ge=1)

    # Environment
    environment: str = Field(default="local")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    # Content store / artifacts
    default_mime_type: str = Field(default="text/markdown")
    diff_context_lines: int = Field(default=3, ge=0)
    chunk_size: int = Field(default=64 * 1024, ge=1)
    system_author: str = Field(default="system")

    # Networks
    network_type: str = Field(default="policy-planner-executor")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def is_postgres(self) -> bool:
        """Check if using PostgreSQL database."""
        return bool(self.db_url and self.db_url.startswith("postgres"))


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", metadata={"env": name}) from exc


def load_config() -> Config:
    """
    Load netledger configuration from environment.

    Environment variables use the NETLEDGER_ prefix.
    """
    return Config(
        # Database
        db_url=os.environ.get("NETLEDGER_DB_URL") or None,
        db_path=Path(os.environ.get("NETLEDGER_DB_PATH", ".netledger.sqlite")).expanduser(),
        db_pool_size=_parse_int("NETLEDGER_DB_POOL_SIZE", 5),

        # Environment
        environment=os.environ.get("NETLEDGER_ENV", "local"),
        log_level=os.environ.get("NETLEDGER_LOG_LEVEL", "INFO"),
        log_json=_parse_bool(os.environ.get("NETLEDGER_LOG_JSON")),

        # Content store / artifacts
        default_mime_type=os.environ.get("NETLEDGER_DEFAULT_MIME_TYPE", "text/markdown"),
        diff_context_lines=_parse_int("NETLEDGER_DIFF_CONTEXT_LINES", 3),
        chunk_size=_parse_int("NETLEDGER_CHUNK_SIZE", 64 * 1024),
        system_author=os.environ.get("NETLEDGER_SYSTEM_AUTHOR", "system"),

        # Networks
        network_type=os.environ.get("NETLEDGER_NETWORK_TYPE", "policy-planner-executor"),
    )


# Singleton config instance (lazy loaded)
_config: Optional[Config] = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Get or create the singleton config instance."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def _reset_config_for_tests() -> None:
    """Reset the global config cache (tests only)."""
    global _config
    with _config_lock:
        _config = None
