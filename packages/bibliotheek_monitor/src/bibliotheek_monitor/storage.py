"""Persistent key-value storage for snapshots."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class Store(Protocol):
    """Key-value store the monitor persists its state in."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class MemoryStore:
    """Store kept in memory only."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore:
    """JSON-based storage, the whole store being one document on disk."""

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self._ensure_data_dir()
        self._data = self._load()

    def _ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, Any]:
        """Load the store from disk, or start empty if it does not exist."""
        if not self.file_path.exists():
            return {}

        try:
            with open(self.file_path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("store root is not an object")
            return data
        except ValueError as e:
            # Corrupted file, start fresh but preserve backup
            backup_path = self.file_path.with_suffix(".json.bak")
            self.file_path.rename(backup_path)
            logger.warning("Corrupted store file backed up to %s (%s)", backup_path, e)
            return {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        """Set a value and write the store to disk."""
        self._data[key] = value
        self._ensure_data_dir()
        tmp_path = self.file_path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False, default=str)
        tmp_path.replace(self.file_path)
