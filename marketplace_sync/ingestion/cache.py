"""
Response cache for host API calls.

Keys are request descriptions ("repos/acme/widgets"); values are any
JSON-serialisable payload. Only successful responses are cached, so a
rate-limited or failed call is retried on the next import run.

FileResponseCache stores one JSON file per key at
``{cache_dir}/{sha256(key)}.json``. Writes go through a uniquely named ``.tmp``
file in the same directory followed by ``os.replace``, so concurrent writers of
one key never share a temp file. Unreadable or unwritable entries degrade to
cache misses.
"""
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ResponseCache(ABC):
    """Opaque key → payload cache."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Cached payload for *key*, or None on a miss or expiry."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""


class MemoryResponseCache(ResponseCache):
    """Process-local cache, mainly for tests and one-shot runs."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class FileResponseCache(ResponseCache):
    """On-disk cache with an optional time-to-live.

    Args:
        cache_dir:   Directory holding the cache files (created if missing).
        ttl_seconds: Entries older than this are treated as misses. 0 or None
                     keeps entries forever.
    """

    def __init__(self, cache_dir: str, ttl_seconds: Optional[int] = None) -> None:
        self._dir = cache_dir
        self._ttl = ttl_seconds or 0
        os.makedirs(self._dir, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self._dir, f"{digest}.json")

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                entry = json.load(fh)
        except (json.JSONDecodeError, OSError):
            logger.warning("Corrupt cache entry %s, ignoring", path)
            return None
        if not isinstance(entry, dict) or "value" not in entry:
            logger.warning("Malformed cache entry %s, ignoring", path)
            return None
        stored_at = entry.get("stored_at")
        if self._ttl:
            if not isinstance(stored_at, (int, float)) or time.time() - stored_at > self._ttl:
                logger.debug("Cache entry for %s expired", key)
                return None
        return entry["value"]

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*; a failed write is logged and dropped."""
        target = self._path(key)
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({"key": key, "stored_at": time.time(), "value": value}, fh)
            os.replace(tmp, target)
        except OSError as exc:
            logger.warning("Could not write cache entry for %s: %s", key, exc)
            if tmp is not None and os.path.exists(tmp):
                os.remove(tmp)

    def clear(self) -> None:
        for name in os.listdir(self._dir):
            if name.endswith(".json"):
                os.remove(os.path.join(self._dir, name))
