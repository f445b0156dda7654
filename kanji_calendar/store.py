"""
Expiring key-value store.

Entries are JSON blobs `{"value": ..., "expiry": <epoch ms>}` kept in a
string-only backend under a namespace prefix. Expired entries are dropped
lazily on read, or all at once by `ExpiringStore.sweep()`.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, MutableMapping, Optional
from urllib.parse import quote, unquote

from kanji_calendar.logger import get_logger

logger = get_logger("kanji_calendar.store")

DEFAULT_NAMESPACE = "cache_"

# 7 days, in seconds
UNSPLASH_TTL = 604800
GEMINI_TTL = 604800


class QuotaExceededError(Exception):
    """Raised by a backend when a write would go past its size quota."""


def now_ms() -> int:
    return int(time.time() * 1000)


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


# -----------------------------
# Backends (string -> string)
# -----------------------------
class MemoryBackend(MutableMapping[str, str]):
    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(_entry_size(k, v) for k, v in self._data.items() if k != key)
            if used + _entry_size(key, value) > self.quota_bytes:
                raise QuotaExceededError(f"quota of {self.quota_bytes} bytes exceeded writing {key!r}")
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)


class FileBackend(MutableMapping[str, str]):
    """One `<quoted key>.json` file per key under `cache_dir`."""

    def __init__(self, cache_dir: Path, quota_bytes: Optional[int] = None) -> None:
        self.cache_dir = Path(cache_dir)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{quote(key, safe='')}.json"

    def __getitem__(self, key: str) -> str:
        p = self._path(key)
        if not p.exists():
            raise KeyError(key)
        return p.read_text(encoding="utf-8")

    def __setitem__(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(_entry_size(k, self[k]) for k in self if k != key)
            if used + _entry_size(key, value) > self.quota_bytes:
                raise QuotaExceededError(f"quota of {self.quota_bytes} bytes exceeded writing {key!r}")
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def __delitem__(self, key: str) -> None:
        p = self._path(key)
        if not p.exists():
            raise KeyError(key)
        p.unlink()

    def __iter__(self) -> Iterator[str]:
        if not self.cache_dir.is_dir():
            return iter([])
        return iter(sorted(unquote(p.stem) for p in self.cache_dir.glob("*.json")))

    def __len__(self) -> int:
        return sum(1 for _ in self)


# -----------------------------
# Expiring store
# -----------------------------
class ExpiringStore:
    def __init__(
        self,
        backend: MutableMapping[str, str],
        namespace: str = DEFAULT_NAMESPACE,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.backend = backend
        self.namespace = namespace
        self.clock = clock or now_ms

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        item = json.dumps(
            {"value": value, "expiry": self.clock() + int(ttl_seconds * 1000)},
            ensure_ascii=False,
        )
        full_key = self._full_key(key)
        try:
            self.backend[full_key] = item
        except QuotaExceededError:
            self.sweep()
            try:
                self.backend[full_key] = item
            except QuotaExceededError as e:
                logger.error("Failed to write cache entry %s: %s", full_key, e)

    def get(self, key: str, default: Any = None) -> Any:
        full_key = self._full_key(key)
        raw = self.backend.get(full_key)
        if raw is None:
            return default

        data = _parse_entry(raw)
        if data is None:
            logger.warning("Dropping malformed cache entry %s", full_key)
            self.backend.pop(full_key, None)
            return default

        if data["expiry"] <= self.clock():
            self.backend.pop(full_key, None)
            return default
        return data["value"]

    def sweep(self) -> int:
        """Delete every expired or malformed entry in the namespace; return how many."""
        now = self.clock()
        removed = 0
        for key in list(self.backend):
            if not key.startswith(self.namespace):
                continue
            data = _parse_entry(self.backend.get(key, ""))
            if data is None or data["expiry"] <= now:
                self.backend.pop(key, None)
                removed += 1
        if removed:
            logger.info("Swept %d expired cache entries", removed)
        return removed


def _parse_entry(raw: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or "value" not in data:
        return None
    expiry = data.get("expiry")
    if isinstance(expiry, bool) or not isinstance(expiry, (int, float)):
        return None
    return data
