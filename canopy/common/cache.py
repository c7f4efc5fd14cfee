"""Cache backends for raw page bodies and processed stage results.

Every backend implements the same four operations, keyed by a string. All of
them are total: a miss returns None and never raises.

- FileSystemCache: one file per key under a root directory. Keys containing
  slashes become subdirectories, so ``courts/ny/3`` lives in
  ``<root>/courts/ny/3.html``.
- MemoryCache: in-process dicts; gone when the process exits.
- NullCache: stores nothing.
"""

from __future__ import annotations

import logging
import os
import pickle
import threading
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any

from canopy.common.compression import compress, decompress

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Key/value storage used by the stage executor."""

    @abstractmethod
    def load_raw(self, key: str) -> str | None:
        """Return the page body stored under ``key``, or None."""

    @abstractmethod
    def save_raw(self, key: str, body: str) -> None:
        """Store a page body under ``key``."""

    @abstractmethod
    def load_value(self, key: str) -> Any | None:
        """Return the processed result stored under ``key``, or None."""

    @abstractmethod
    def save_value(self, key: str, value: Any) -> None:
        """Store a processed result under ``key``."""


class NullCache(CacheBackend):
    """A backend that never stores anything."""

    def load_raw(self, key: str) -> str | None:
        return None

    def save_raw(self, key: str, body: str) -> None:
        pass

    def load_value(self, key: str) -> Any | None:
        return None

    def save_value(self, key: str, value: Any) -> None:
        pass


class MemoryCache(CacheBackend):
    """A volatile in-process backend.

    Raw bodies and processed values live in separate namespaces, so one
    instance can serve as both the HTML and the processed cache. Values are
    deep-copied on the way in and out; callers can't alter what is cached.
    """

    def __init__(self) -> None:
        self._raw: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._lock = threading.Lock()

    def load_raw(self, key: str) -> str | None:
        with self._lock:
            return self._raw.get(key)

    def save_raw(self, key: str, body: str) -> None:
        with self._lock:
            self._raw[key] = body

    def load_value(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._values:
                return None
            return deepcopy(self._values[key])

    def save_value(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = deepcopy(value)


class FileSystemCache(CacheBackend):
    """A persistent backend storing one file per key under ``root``.

    Raw bodies are written as ``<key>.html`` (or ``<key>.html.zst`` when
    ``compress`` is set). Processed values are pickled to ``<key>.pickle``,
    so a cached result comes back exactly as it was produced. A value that
    can't be pickled is not persisted; a warning is logged and the next run
    recomputes it.
    """

    def __init__(self, root: Path | str, compress: bool = False) -> None:
        self.root = Path(root).expanduser()
        self.compress = compress

    def __repr__(self) -> str:
        return f"FileSystemCache({str(self.root)!r}, compress={self.compress})"

    def _path(self, key: str, suffix: str) -> Path:
        relative = Path(key.lstrip("/"))
        if ".." in relative.parts:
            raise ValueError(f"Cache key may not contain '..': {key!r}")
        return self.root / f"{relative}{suffix}"

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)

    def _read(self, path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def load_raw(self, key: str) -> str | None:
        if self.compress:
            data = self._read(self._path(key, ".html.zst"))
            return None if data is None else decompress(data).decode("utf-8")
        data = self._read(self._path(key, ".html"))
        return None if data is None else data.decode("utf-8")

    def save_raw(self, key: str, body: str) -> None:
        data = body.encode("utf-8")
        if self.compress:
            self._write(self._path(key, ".html.zst"), compress(data))
        else:
            self._write(self._path(key, ".html"), data)

    def load_value(self, key: str) -> Any | None:
        data = self._read(self._path(key, ".pickle"))
        if data is None:
            return None
        try:
            return pickle.loads(data)
        except Exception as e:
            logger.warning(f"Ignoring unreadable cache entry {key}: {e}")
            return None

    def save_value(self, key: str, value: Any) -> None:
        try:
            data = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except Exception as e:
            logger.warning(f"Not persisting processed result for {key}: {e}")
            return
        self._write(self._path(key, ".pickle"), data)


def sanitize_cache(
    value: bool | CacheBackend | None, cache_dir: Path, compress: bool = False
) -> CacheBackend:
    """Convert a cache option into a backend.

    ``True`` means a FileSystemCache rooted at ``cache_dir``; any falsy value
    means a NullCache; a backend is used as is.
    """
    if isinstance(value, CacheBackend):
        return value
    if value is True:
        return FileSystemCache(cache_dir, compress=compress)
    return NullCache()
