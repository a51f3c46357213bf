"""
fluxatom Storage Backends
=========================

String-keyed, string-valued stores consumed by the persistence pipeline.

Any object with ``get``, ``set`` and ``remove`` satisfies the ``Storage``
protocol. Two backends ship with the package:

- MemoryStorage: bounded in-process store with LRU eviction (cachetools).
- JSONFileStorage: every key kept in one JSON document on disk.

Atoms created without an explicit storage share a lazily created
``MemoryStorage`` returned by ``get_default_storage()``.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, Union, runtime_checkable

from cachetools import LRUCache

from .exceptions import StorageError


@runtime_checkable
class Storage(Protocol):
    """Key-value store holding serialized persisted records."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """
    In-memory storage with LRU eviction.

    Thread-safe. Once ``max_entries`` keys are held, writing a new key evicts
    the least recently used one.

    Usage:
        storage = MemoryStorage()
        storage.set("todos", '{"data": [], "version": "1"}')
        storage.get("todos")
        storage.remove("todos")
    """

    def __init__(self, max_entries: int = 10000):
        self._data: LRUCache = LRUCache(maxsize=max_entries)
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Storage values must be strings, got {type(value)!r}")
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self):
        with self._lock:
            return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class JSONFileStorage:
    """
    Storage backed by a single JSON object file.

    The file is read on every ``get`` so several processes may share it;
    writes replace it atomically. Read or write failures raise
    ``StorageError``.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Storage values must be strings, got {type(value)!r}")
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._dump(data)

    def _load(self) -> Dict[str, str]:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self._path} does not hold a JSON object")
        return data

    def _dump(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=self._path.name, suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, sort_keys=True)
            os.replace(tmp_name, self._path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Cannot write {self._path}: {e}") from e


# ============================================================================
# DEFAULT STORAGE
# ============================================================================

_default_storage: Optional[MemoryStorage] = None


def get_default_storage() -> MemoryStorage:
    """Shared storage used by atoms that persist without an explicit store."""
    global _default_storage
    if _default_storage is None:
        _default_storage = MemoryStorage()
    return _default_storage


def reset_default_storage() -> None:
    """Drop the shared storage (for tests)."""
    global _default_storage
    _default_storage = None
