"""Configuration module for mnote."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# User-level overrides live next to the default notes root
_USER_ENV = Path.home() / ".mnote" / ".env"
load_dotenv(_USER_ENV)
load_dotenv()

logger = logging.getLogger(__name__)

DB_FILENAME = "mnote.db"
LOCK_FILENAME = ".mnote-sync.lock"
CONFIG_FILENAME = "config.json"
TEMPLATES_SUBDIR = Path(".foam") / "templates"

SOURCE_STANDARD = "standard location"
SOURCE_ENV = "MNOTE_HOME environment variable"
SOURCE_FLAG = "--db-location flag"


def _default_root() -> Path:
    home = os.getenv("MNOTE_HOME")
    return Path(home).expanduser() if home else Path.home() / ".mnote"


def _default_source() -> str:
    return SOURCE_ENV if os.getenv("MNOTE_HOME") else SOURCE_STANDARD


class MnoteConfig(BaseModel):
    """Configuration for mnote."""

    # Notes root: book directories, index, lock and config.json live here
    root: Path = Field(default_factory=_default_root)
    location_source: str = Field(default_factory=_default_source)
    # Logging
    log_level: str = Field(
        default_factory=lambda: os.getenv("MNOTE_LOG_LEVEL", "WARNING").upper()
    )
    # Kept outside the root so log files never end up in the synced repo
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("MNOTE_LOG_DIR", str(Path.home() / ".mnote-logs"))
        ).expanduser()
    )
    # Sync lock
    lock_stale_seconds: float = Field(
        default_factory=lambda: float(os.getenv("MNOTE_LOCK_STALE_SECONDS", "600"))
    )
    lock_poll_interval: float = Field(
        default_factory=lambda: float(os.getenv("MNOTE_LOCK_POLL_INTERVAL", "0.5"))
    )
    sync_lock_timeout: float = Field(
        default_factory=lambda: float(os.getenv("MNOTE_SYNC_LOCK_TIMEOUT", "30"))
    )
    # Search index
    db_busy_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("MNOTE_DB_BUSY_TIMEOUT_MS", "5000"))
    )
    # Git
    git_timeout: int = Field(
        default_factory=lambda: int(os.getenv("MNOTE_GIT_TIMEOUT", "300"))
    )
    # Daemon
    daemon_interval: float = Field(
        default_factory=lambda: float(os.getenv("MNOTE_DAEMON_INTERVAL", "300"))
    )

    @model_validator(mode="after")
    def _validate_timings(self) -> "MnoteConfig":
        for name in (
            "lock_stale_seconds",
            "lock_poll_interval",
            "sync_lock_timeout",
            "db_busy_timeout_ms",
            "git_timeout",
            "daemon_interval",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        return self

    def set_db_location(self, location: Path) -> None:
        """Point mnote at another notes root (the --db-location flag)."""
        self.root = Path(location).expanduser()
        self.location_source = SOURCE_FLAG

    def get_root(self) -> Path:
        """Return the absolute notes root."""
        return self.root.expanduser().resolve()

    def get_db_path(self) -> Path:
        return self.get_root() / DB_FILENAME

    def get_lock_path(self) -> Path:
        return self.get_root() / LOCK_FILENAME

    def get_config_path(self) -> Path:
        return self.get_root() / CONFIG_FILENAME

    def get_templates_dir(self) -> Path:
        return self.get_root() / TEMPLATES_SUBDIR

    def get_log_level(self) -> int:
        """Translate the configured level name, falling back to WARNING."""
        level = logging.getLevelName(self.log_level)
        if isinstance(level, int):
            return level
        logger.warning(f"Unknown log level {self.log_level!r}, using WARNING")
        return logging.WARNING


# Create a global config instance
config = MnoteConfig()


def describe_location(cfg: Optional[MnoteConfig] = None) -> str:
    """One-line description of where notes live and why (``mnote where``)."""
    cfg = cfg or config
    return f"{cfg.get_root()} (from {cfg.location_source})"
