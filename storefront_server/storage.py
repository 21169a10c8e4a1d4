"""Keyed durable storage backed by a JSON file."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class PersistentStore:
    """Load/save JSON-serializable values under stable keys.

    All keys live in one JSON object on disk. Values are plain text: the
    file is not treated as a trust boundary, it only gets owner-only
    permissions.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        """
        Initialize the store.

        Args:
            path: Path of the state file (default: ~/.storefront_session.json)
        """
        if path is None:
            path = str(Path.home() / ".storefront_session.json")
        self.path = path
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        """Read the state file; a missing or corrupt file yields an empty store."""
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load state from {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed state file {self.path}")
            return {}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``; nothing changes unless the file write succeeds."""
        self._save({**self._data, key: value})

    def remove(self, *keys: str) -> None:
        data = {key: value for key, value in self._data.items() if key not in keys}
        if len(data) != len(self._data):
            self._save(data)
            logger.debug(f"Removed {', '.join(keys)} from {self.path}")
