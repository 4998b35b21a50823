from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from diskcache import Cache, Timeout
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Fraction of the size budget freed on top of the overage, so a store that
# sits at its limit does not evict on every single write.
EVICTION_HEADROOM = 0.05
# Expired rows removed opportunistically per write.
SWEEP_BATCH_LIMIT = 100
# Row holding the aggregate size and entry count of the directory.
ACCOUNTING_KEY = "__ttl_cache_store__:accounting"

_STORAGE_ERRORS = (sqlite3.Error, OSError, Timeout)


class CacheWriteError(Exception):
    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class CacheStats(BaseModel):
    hits: int
    misses: int
    size: int
    entries: int


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: str | bytes
    created_at: float
    expires_at: float
    size_bytes: int

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass
class _Accounting:
    size_bytes: int = 0
    entries: int = 0

    def add(self, entry: CacheEntry) -> None:
        self.size_bytes += entry.size_bytes
        self.entries += 1

    def remove(self, entry: CacheEntry) -> None:
        self.size_bytes -= entry.size_bytes
        self.entries -= 1


def _byte_length(value: str | bytes) -> int:
    if isinstance(value, bytes):
        return len(value)
    return len(value.encode("utf-8"))


def _parse_entry(raw: Any) -> CacheEntry | None:
    if not isinstance(raw, dict):
        return None
    try:
        return CacheEntry(**raw)
    except TypeError:
        return None


def _parse_accounting(raw: Any) -> _Accounting | None:
    if not isinstance(raw, dict):
        return None
    try:
        return _Accounting(**raw)
    except TypeError:
        return None


class TtlCacheStore:
    """Persistent key/value store with per-entry expiry and a total size budget.

    Entries live in a diskcache ``Cache`` (a single SQLite table) so they
    survive restarts and every write is one atomic transaction. diskcache's
    own expiry and eviction are switched off: this store owns the lifecycle
    and evicts the oldest entries first once a write pushes the aggregate
    ``size_bytes`` over ``max_size_bytes``.

    The aggregate size and entry count are kept in a reserved row of the same
    table and updated inside each write transaction, so every process that
    opens the directory (server, operator CLI) sees the same totals.
    While a transaction runs the row is removed, which keeps it out of the
    oldest-first scans; it is written back as the newest row on commit.

    Expired entries are always reported as misses; physically deleting them
    happens opportunistically on write or through ``cleanup()``. Rows that do
    not decode as entries are treated as misses and dropped when a scan
    reaches them.
    """

    def __init__(
        self,
        directory: str,
        *,
        max_size_bytes: int,
        default_ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive")
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")

        self.directory = directory
        self.max_size_bytes = max_size_bytes
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._cache = Cache(directory, eviction_policy="none", statistics=False)

        self._hits = 0
        self._misses = 0

        accounting = self._read_accounting()
        logger.info(
            "Cache initialized at %s (default ttl=%ss, max size=%s bytes, %s entries)",
            directory,
            default_ttl_seconds,
            max_size_bytes,
            accounting.entries,
        )

    def __enter__(self) -> TtlCacheStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get(self, key: str) -> str | bytes | None:
        """Return the live value for `key`, or None on a miss."""
        try:
            entry = self._read_entry(key)
        except _STORAGE_ERRORS as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, exc)
            entry = None

        if entry is None or entry.is_expired(self._clock()):
            self._misses += 1
            logger.debug("Cache miss: %s", key)
            return None

        self._hits += 1
        logger.debug("Cache hit: %s", key)
        return entry.value

    def set(self, key: str, value: str | bytes, ttl_seconds: float | None = None) -> bool:
        """Store `value` under `key`; failures are logged and never raised.

        Returns True when the value was stored.
        """
        try:
            self.put(key, value, ttl_seconds)
        except CacheWriteError as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)
            return False
        return True

    def put(self, key: str, value: str | bytes, ttl_seconds: float | None = None) -> CacheEntry:
        """Store `value` under `key`, raising CacheWriteError on storage failure."""
        if key == ACCOUNTING_KEY:
            raise ValueError(f"{ACCOUNTING_KEY!r} is reserved")
        if not isinstance(value, (str, bytes)):
            raise TypeError("cache values must be serialized to str or bytes before caching")
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl,
            size_bytes=_byte_length(value),
        )

        try:
            with self._cache.transact():
                accounting = self._take_accounting()
                previous = self._read_entry(key)
                if previous is not None:
                    accounting.remove(previous)
                # Delete first so the rewritten entry moves to the newest position.
                self._cache.delete(key)
                self._cache.set(key, asdict(entry))
                accounting.add(entry)

                self._sweep_expired(accounting, now, limit=SWEEP_BATCH_LIMIT)
                if accounting.size_bytes > self.max_size_bytes:
                    self._evict_oldest(accounting, protected_key=key)
                self._save_accounting(accounting)
        except _STORAGE_ERRORS as exc:
            raise CacheWriteError(f"failed to store cache entry: {exc}", key) from exc

        logger.debug("Cache set: %s (%s bytes, ttl=%ss)", key, entry.size_bytes, ttl)
        return entry

    def invalidate(self, key: str) -> None:
        if key == ACCOUNTING_KEY:
            return
        try:
            with self._cache.transact():
                accounting = self._take_accounting()
                entry = self._read_entry(key)
                if self._cache.delete(key) and entry is not None:
                    accounting.remove(entry)
                self._save_accounting(accounting)
        except _STORAGE_ERRORS as exc:
            logger.warning("Cache invalidate failed for %s: %s", key, exc)
            return
        logger.debug("Cache invalidated: %s", key)

    def clear(self) -> None:
        with self._cache.transact():
            accounting = self._take_accounting()
            self._cache.clear()
            self._save_accounting(_Accounting())
        logger.info("Cache cleared (%s entries removed)", accounting.entries)

    def cleanup(self) -> int:
        """Physically delete every expired entry and return how many were removed."""
        now = self._clock()
        removed = 0
        with self._cache.transact():
            accounting = self._take_accounting()
            for key in list(self._cache):
                entry = self._read_entry(key)
                if entry is None:
                    self._discard_unreadable(key)
                elif entry.is_expired(now):
                    self._cache.delete(key)
                    accounting.remove(entry)
                    removed += 1
            self._save_accounting(accounting)
        if removed:
            logger.info("Expired cache entries cleaned up: %s", removed)
        return removed

    def stats(self) -> CacheStats:
        accounting = self._read_accounting()
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=accounting.size_bytes,
            entries=accounting.entries,
        )

    def entries(self) -> list[CacheEntry]:
        """Return all stored entries, oldest first, including expired ones."""
        entries: list[CacheEntry] = []
        for key in list(self._cache):
            if key == ACCOUNTING_KEY:
                continue
            entry = self._read_entry(key)
            if entry is not None:
                entries.append(entry)
        return entries

    def close(self) -> None:
        self._cache.close()
        logger.info("Cache closed: %s", self.directory)

    def _read_entry(self, key: str) -> CacheEntry | None:
        if key == ACCOUNTING_KEY:
            return None
        return _parse_entry(self._cache.get(key))

    def _discard_unreadable(self, key: str) -> None:
        self._cache.delete(key)
        logger.warning("Dropped unreadable cache row: %s", key)

    def _read_accounting(self) -> _Accounting:
        accounting = _parse_accounting(self._cache.get(ACCOUNTING_KEY))
        if accounting is None:
            accounting = self._scan_accounting()
        return accounting

    def _take_accounting(self) -> _Accounting:
        """Remove the accounting row for the current transaction and return its totals."""
        accounting = _parse_accounting(self._cache.pop(ACCOUNTING_KEY, default=None))
        if accounting is None:
            # Missing after a foreign clear() or on a fresh directory.
            accounting = self._scan_accounting()
        return accounting

    def _save_accounting(self, accounting: _Accounting) -> None:
        self._cache.delete(ACCOUNTING_KEY)
        self._cache.set(ACCOUNTING_KEY, asdict(accounting))

    def _scan_accounting(self) -> _Accounting:
        accounting = _Accounting()
        for key in list(self._cache):
            entry = self._read_entry(key)
            if entry is not None:
                accounting.add(entry)
        return accounting

    def _peek_oldest(self) -> tuple[str, CacheEntry | None] | None:
        try:
            key, raw = self._cache.peekitem(last=False)
        except KeyError:
            return None
        return key, _parse_entry(raw)

    def _sweep_expired(self, accounting: _Accounting, now: float, *, limit: int) -> int:
        removed = 0
        while removed < limit:
            oldest = self._peek_oldest()
            if oldest is None:
                break
            key, entry = oldest
            if entry is None:
                self._discard_unreadable(key)
            elif entry.is_expired(now):
                self._cache.delete(key)
                accounting.remove(entry)
            else:
                break
            removed += 1
        if removed:
            logger.debug("Swept %s expired cache entries", removed)
        return removed

    def _evict_oldest(self, accounting: _Accounting, *, protected_key: str) -> None:
        overage = accounting.size_bytes - self.max_size_bytes
        target_size = self.max_size_bytes - int(self.max_size_bytes * EVICTION_HEADROOM)
        freed = 0
        evicted = 0
        while accounting.size_bytes > target_size:
            oldest = self._peek_oldest()
            if oldest is None:
                # Nothing left to evict, so the totals were stale.
                accounting.size_bytes = 0
                accounting.entries = 0
                break
            key, entry = oldest
            if entry is None:
                self._discard_unreadable(key)
                continue
            # The entry being written only goes when it alone exceeds the budget.
            if key == protected_key and accounting.size_bytes <= self.max_size_bytes:
                break
            self._cache.delete(key)
            accounting.remove(entry)
            freed += entry.size_bytes
            evicted += 1

        logger.warning(
            "Cache over budget by %s bytes, evicted %s oldest entries (%s bytes freed)",
            overage,
            evicted,
            freed,
        )
