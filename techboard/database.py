import copy
import json
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

JSON = Any


class KeyValueStore(Protocol):
    """
    What the registry needs from persistence: JSON documents by key, plus a
    critical section for read-modify-write sequences.
    """

    def load(self, key: str) -> JSON | None: ...

    def save(self, key: str, value: JSON) -> None: ...

    def transaction(self) -> Any: ...


class InMemoryKeyValueStore:
    """
    Simple in-memory key/value store.
    """

    def __init__(self) -> None:
        self._store: dict[str, JSON] = {}
        self._lock = threading.RLock()

    def save(self, key: str, value: JSON) -> None:
        # stored documents never alias caller state
        self._store[key] = copy.deepcopy(value)

    def load(self, key: str) -> JSON | None:
        return copy.deepcopy(self._store.get(key))

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._store)

    def clear(self) -> None:
        self._store.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(self._store)

    def __len__(self) -> int:
        return len(self._store)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield


class JsonFileKeyValueStore:
    """
    Key/value store kept as a single JSON document on disk.

    Every save rewrites the whole file through a temporary file and an
    atomic rename.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._cache: dict[str, JSON] = self._read()

    def _read(self) -> dict[str, JSON]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._cache, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    def load(self, key: str) -> JSON | None:
        return copy.deepcopy(self._cache.get(key))

    def save(self, key: str, value: JSON) -> None:
        with self._lock:
            self._cache[key] = copy.deepcopy(value)
            self._write()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._cache.pop(key, None) is not None:
                self._write()

    def keys(self) -> list[str]:
        return list(self._cache)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield
