"""Durable keyed records for quota counters and cached responses."""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional


class StateStoreError(Exception):
    """Raised when a record cannot be read or written."""
    pass


class StateStore(ABC):
    """Stores small JSON-compatible records by name."""

    @abstractmethod
    def load(self, name: str) -> Optional[dict]:
        """Return the record, or None if it has never been saved."""

    @abstractmethod
    def save(self, name: str, data: dict) -> None:
        """Durably replace the record before returning."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove the record; missing records are ignored."""


class JsonFileStore(StateStore):
    """
    One JSON file per record inside a directory.

    Writes go to a temporary file that is then moved over the record, so a
    crash mid-write leaves the previous version intact.
    """

    def __init__(self, directory):
        self.directory = Path(directory).expanduser()
        self._lock = threading.Lock()

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def load(self, name: str) -> Optional[dict]:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StateStoreError(f"Cannot read {path}: {e}") from e
        if not isinstance(data, dict):
            raise StateStoreError(f"Cannot read {path}: expected a JSON object")
        return data

    def save(self, name: str, data: dict) -> None:
        path = self._path(name)
        tmp = path.with_suffix(".tmp")
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, path)
            except (OSError, TypeError, ValueError) as e:
                raise StateStoreError(f"Cannot write {path}: {e}") from e
        logging.debug("Saved state record %s", path)

    def delete(self, name: str) -> None:
        path = self._path(name)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StateStoreError(f"Cannot delete {path}: {e}") from e


class MemoryStore(StateStore):
    """In-process store for tests; records are copied through JSON on the way in and out."""

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> Optional[dict]:
        with self._lock:
            raw = self._records.get(name)
        return json.loads(raw) if raw is not None else None

    def save(self, name: str, data: dict) -> None:
        try:
            raw = json.dumps(data)
        except (TypeError, ValueError) as e:
            raise StateStoreError(f"Cannot encode {name}: {e}") from e
        with self._lock:
            self._records[name] = raw

    def delete(self, name: str) -> None:
        with self._lock:
            self._records.pop(name, None)
