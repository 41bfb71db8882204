"""Bounded LRU cache with optional expiry and disk mirroring.

Used by the registry (parsed descriptors), the search engine (query results)
and the resolver (resolution results).  It only avoids repeated work:
clearing it never changes what those components return.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from stackforge.errors import CacheError
from stackforge.utils import atomic_write, load_json

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 50 * 1024 * 1024

_MISSING = object()


@dataclass
class CacheEntry:
    """A single cached value with its accounted size.

    ``expires_at`` is a wall-clock timestamp, so it survives a round trip
    through the disk mirror; ``None`` never expires.
    """

    value: Any
    size: int
    persistent: bool = False
    expires_at: Optional[float] = None
    last_access: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_access = time.monotonic()

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheManager:
    """LRU cache bounded by total byte size (and optionally entry count).

    Entries set with ``persistent=True`` are also written to ``disk_dir`` as
    JSON.  The first disk failure is logged and the cache carries on
    memory-only.  Expired entries behave exactly like missing ones.

    Args:
        max_bytes: Memory budget; least-recently-used entries are evicted
            until the total accounted size fits.
        max_entries: Optional cap on the number of in-memory entries.
        disk_dir: Directory for persistent entries, or ``None`` to disable.
        ttl: Default lifetime of an entry in seconds; ``None`` keeps entries
            until they are evicted or invalidated.
        clock: Wall-clock source used for expiry.
    """

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_entries: Optional[int] = None,
        disk_dir: str | Path | None = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        self.max_bytes = max_bytes
        self.max_entries = max_entries
        self.disk_dir: Optional[Path] = Path(disk_dir).expanduser() if disk_dir else None
        self.ttl = ttl
        self.clock = clock

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._bytes = 0
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._disk_hits = 0
        self._disk_errors = 0

    # -- Public API ---------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for *key*, marking it most recently used."""
        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.is_expired(now):
                    entry.touch()
                    self._entries.move_to_end(key)
                    self._hits += 1
                    return entry.value
                self._expire(key)

            stored = self._load_from_disk(key, now)
            if stored is not _MISSING:
                value, expires_at = stored
                self._hits += 1
                self._disk_hits += 1
                self._store(key, value, persistent=True, expires_at=expires_at)
                return value

            self._misses += 1
            return default

    def set(self, key: str, value: Any, persistent: bool = False, ttl: Optional[float] = None) -> None:
        """Store *value*; persistent entries are mirrored to disk best-effort.

        *ttl* overrides the cache-wide default lifetime for this entry.
        """
        lifetime = ttl if ttl is not None else self.ttl
        if lifetime is not None and lifetime <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            expires_at = self.clock() + lifetime if lifetime is not None else None
            self._store(key, value, persistent, expires_at)
            if persistent:
                self._save_to_disk(key, value, expires_at)

    def purge_expired(self) -> int:
        """Drop every expired entry, in memory and on disk.

        Returns:
            The number of in-memory entries removed.
        """
        with self._lock:
            now = self.clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._drop(key)
            self._expirations += len(expired)
            self._remove_from_disk(lambda stored, expires_at: expires_at is not None and now >= expires_at)
            if expired:
                logger.debug("Purged %d expired cache entries", len(expired))
            return len(expired)

    def invalidate(self, key: Optional[str] = None, prefix: Optional[str] = None) -> int:
        """Drop one key, every key starting with *prefix*, or everything.

        Returns:
            The number of in-memory entries removed.
        """
        with self._lock:
            if key is None and prefix is None:
                removed = len(self._entries)
                self.clear()
                return removed

            if key is not None:
                targets = [key] if key in self._entries else []
            else:
                targets = [k for k in self._entries if k.startswith(prefix or "")]
            for target in targets:
                self._drop(target)

            if key is not None:
                self._remove_from_disk(lambda stored, _: stored == key)
            else:
                self._remove_from_disk(lambda stored, _: stored.startswith(prefix or ""))
            return len(targets)

    def clear(self, include_disk: bool = True) -> None:
        """Empty the cache."""
        with self._lock:
            self._entries.clear()
            self._bytes = 0
            if include_disk:
                self._remove_from_disk(lambda stored, _: True)

    def stats(self) -> dict[str, Any]:
        """Hit/miss/eviction counters for diagnostics."""
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "bytes": self._bytes,
                "max_bytes": self.max_bytes,
                "max_entries": self.max_entries,
                "ttl": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "disk_enabled": self.disk_dir is not None,
                "disk_hits": self._disk_hits,
                "disk_errors": self._disk_errors,
            }

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.is_expired(self.clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -- Memory store -------------------------------------------------------

    def _store(self, key: str, value: Any, persistent: bool, expires_at: Optional[float] = None) -> None:
        size = estimate_size(value)
        if key in self._entries:
            self._drop(key)
        if size > self.max_bytes:
            logger.debug("Not caching %s: %d bytes exceeds budget", key, size)
            return
        self._entries[key] = CacheEntry(value=value, size=size, persistent=persistent, expires_at=expires_at)
        self._bytes += size
        self._evict()

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.size

    def _expire(self, key: str) -> None:
        self._drop(key)
        self._expirations += 1
        self._remove_from_disk(lambda stored, _: stored == key)
        logger.debug("Cache entry %s expired", key)

    def _evict(self) -> None:
        while self._entries and (
            self._bytes > self.max_bytes
            or (self.max_entries is not None and len(self._entries) > self.max_entries)
        ):
            key, entry = self._entries.popitem(last=False)
            self._bytes -= entry.size
            self._evictions += 1
            logger.debug("Evicted cache entry %s (%d bytes)", key, entry.size)

    # -- Disk store ---------------------------------------------------------

    def _disk_path(self, key: str) -> Path:
        assert self.disk_dir is not None
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return self.disk_dir / f"{digest}.json"

    def _save_to_disk(self, key: str, value: Any, expires_at: Optional[float]) -> None:
        if self.disk_dir is None:
            return
        record = {"key": key, "expires_at": expires_at, "value": _jsonable(value)}
        try:
            payload = json.dumps(record, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.warning("Cache entry %s is not JSON serialisable; kept in memory only: %s", key, exc)
            return
        try:
            self._write_disk(self._disk_path(key), payload)
        except CacheError as exc:
            self._degrade(exc)

    def _load_from_disk(self, key: str, now: float) -> Any:
        """``(value, expires_at)`` for *key*, or ``_MISSING``."""
        if self.disk_dir is None:
            return _MISSING
        path = self._disk_path(key)
        try:
            if not path.exists():
                return _MISSING
            record = load_json(path)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt cache file %s", path)
            path.unlink(missing_ok=True)
            return _MISSING
        except OSError as exc:
            self._degrade(CacheError(f"Cannot read cache file {path}: {exc}"))
            return _MISSING
        if record.get("key") != key:
            return _MISSING
        expires_at = record.get("expires_at")
        if expires_at is not None and now >= expires_at:
            self._expirations += 1
            path.unlink(missing_ok=True)
            return _MISSING
        return record.get("value"), expires_at

    def _remove_from_disk(self, matches: Callable[[str, Optional[float]], bool]) -> None:
        """Delete disk records whose ``(key, expires_at)`` satisfy *matches*."""
        if self.disk_dir is None or not self.disk_dir.is_dir():
            return
        try:
            for path in self.disk_dir.glob("*.json"):
                try:
                    record = load_json(path)
                except json.JSONDecodeError:
                    record = {}
                if matches(str(record.get("key", "")), record.get("expires_at")):
                    path.unlink(missing_ok=True)
        except OSError as exc:
            self._degrade(CacheError(f"Cannot clean cache directory {self.disk_dir}: {exc}"))

    @staticmethod
    def _write_disk(path: Path, payload: str) -> None:
        try:
            atomic_write(path, payload)
        except OSError as exc:
            raise CacheError(f"Cannot write cache file {path}: {exc}") from exc

    def _degrade(self, exc: CacheError) -> None:
        self._disk_errors += 1
        logger.warning("%s; continuing with memory-only cache", exc)
        self.disk_dir = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def estimate_size(value: Any) -> int:
    """Approximate size of *value* in bytes, via its JSON encoding."""
    if isinstance(value, BaseModel):
        return len(value.model_dump_json().encode("utf-8"))
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    return len(json.dumps(_jsonable(value), default=str, skipkeys=True).encode("utf-8"))


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value
