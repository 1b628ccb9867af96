"""Minimal key-value persistence used for checkpoints, cursors and caches."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from hevy_sync.models.clock import Clock, WallClock


logger = logging.getLogger(__name__)


class KVStore(Protocol):
    """String key-value store interface."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKVStore:
    """In-process store. State is lost when the process exits."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return list(self._data)


class FileKVStore:
    """
    JSON file backed store.

    The whole document is re-read on every get so that separate processes
    observe each other's writes; every write replaces the file atomically.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Invalid state file %s, starting empty: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".kv-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


class TTLCache:
    """Expiring JSON values layered over any KVStore."""

    def __init__(self, store: KVStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or WallClock()

    def put(self, key: str, value: object, ttl_seconds: float) -> None:
        entry = {"value": value, "expires_at": self.clock.now() + ttl_seconds}
        self.store.set(key, json.dumps(entry))

    def get(self, key: str) -> Optional[object]:
        """Return the cached value, or None when absent, expired or unreadable."""
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            expires_at = float(entry["expires_at"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            self.store.delete(key)
            return None
        if self.clock.now() >= expires_at:
            self.store.delete(key)
            return None
        return entry.get("value")

    def remove(self, key: str) -> None:
        self.store.delete(key)
