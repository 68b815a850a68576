"""Persistent key/value configuration stored as JSON in the notes root.

Keys are dotted paths (``autosync.git.remote``) into nested objects.
Values given on the command line are parsed as JSON when possible, so
``true`` becomes a boolean and ``5`` an integer, and otherwise kept as
plain strings.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from mnote.exceptions import (ConfigKeyNotFoundError, ConfigurationError,
                              ErrorCode, StorageError)

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "vi"

_MISSING = object()


def _key_parts(key: str) -> List[str]:
    parts = key.split(".") if key else []
    if not parts or not all(p.strip() for p in parts):
        raise ConfigurationError(f"Invalid config key '{key}'", config_key=key)
    return parts


def parse_value(raw: str) -> Any:
    """Parse a raw string as JSON, falling back to the string itself."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


class ConfigStore:
    """JSON-file backed configuration (``<root>/config.json``)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """Read the whole config; a missing or invalid file is empty."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable config {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config {self.path}: top level is not an object")
            return {}
        return data

    def save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
        except OSError as e:
            raise StorageError(
                f"Failed to write config: {e}",
                operation="save_config",
                path=str(self.path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e
            )

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Look up a dotted key.

        Raises:
            ConfigKeyNotFoundError: If the key is absent and no default given.
        """
        current: Any = self.load()
        for part in _key_parts(key):
            if not isinstance(current, dict) or part not in current:
                if default is _MISSING:
                    raise ConfigKeyNotFoundError(key)
                return default
            current = current[part]
        return current

    def set(self, key: str, raw_value: Any) -> Dict[str, Any]:
        """Set a dotted key, creating intermediate objects as needed.

        String values are parsed as JSON first. Returns the updated config.
        """
        value = parse_value(raw_value) if isinstance(raw_value, str) else raw_value
        data = self.load()
        parts = _key_parts(key)
        current = data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value
        self.save(data)
        logger.debug(f"Config set {key}={value!r}")
        return data

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    def get_editor(self) -> str:
        """Editor command: $EDITOR, then the ``editor`` key, then vi."""
        env_editor = os.getenv("EDITOR")
        if env_editor:
            return env_editor
        configured = self.get("editor", None)
        if isinstance(configured, str) and configured:
            return configured
        return DEFAULT_EDITOR
