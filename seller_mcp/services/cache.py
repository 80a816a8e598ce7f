"""
CacheManager - Two-tier async cache with TTL and statistics.

Features:
- Memory tier with least-recently-accessed eviction at max_entries
- Optional persistent tier: one JSON file per key, promoted into memory on hit
- TTL expiry detected on read and by a periodic sweep
- Hit/miss statistics
- Glob-style invalidation across both tiers

The persistent tier is advisory. Disk faults are logged and degrade to a
miss; they are never raised to callers. Files are unlocked shared state, so
concurrent writers to one key race and the last write wins.
"""

import asyncio
import base64
import binascii
import fnmatch
import json
import time
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

CACHE_FILE_SUFFIX = ".cache"


def default_cache_dir() -> Path:
    return Path.home() / ".seller-mcp" / "cache"


@dataclass
class CacheConfig:
    """Configuration for CacheManager. Durations are in seconds."""

    default_ttl: float = 60  # 0 disables expiry
    check_period: float = 120  # Sweep interval, 0 disables the sweep
    max_entries: int = 1000
    persistent: bool = False
    persistent_dir: Path = field(default_factory=default_cache_dir)
    collect_stats: bool = True


@dataclass
class CacheEntry(Generic[T]):
    """A single memory-tier entry with access metadata."""

    value: T
    created_at: float
    last_accessed_at: float
    access_count: int = 0
    expires_at: float | None = None  # None: never expires

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    evictions: int = 0

    @property
    def hit_ratio(self) -> float:
        """hits / (hits + misses); 0.0 before the first lookup."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "evictions": self.evictions,
            "hit_ratio": self.hit_ratio,
        }


def encode_key(key: str) -> str:
    """Filesystem-safe, reversible encoding of a cache key (urlsafe base64)."""
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")


def decode_key(encoded: str) -> str:
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding).decode("utf-8")


class CacheManager:
    """
    Tiered cache manager.

    Usage:
        cache = CacheManager(CacheConfig(default_ttl=300, persistent=True))

        key = CacheManager.generate_key("orders", {"status": "Shipped"}, next_token)
        orders = await cache.with_cache(key, lambda: client.get_orders(...))

        # After a write
        await cache.invalidate("orders:*")
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.config = config or CacheConfig()
        self._clock = clock or time.time
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._stats = CacheStats()
        self._last_sweep = self._clock()
        self._persistent_ready = False

        if self.config.persistent:
            self._init_persistent_dir()

        logger.debug(
            f"Cache manager initialized (ttl={self.config.default_ttl}s, "
            f"max_entries={self.config.max_entries}, "
            f"persistent={self._persistent_ready})"
        )

    def _init_persistent_dir(self) -> None:
        directory = Path(self.config.persistent_dir).expanduser()
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to initialize persistent cache at {directory}: {e}")
            return
        self._persistent_dir = directory
        self._persistent_ready = True

    @staticmethod
    def generate_key(
        endpoint: str,
        params: dict[str, Any] | None = None,
        next_token: str | None = None,
    ) -> str:
        """
        Build a composite key from endpoint, filter parameters and page token.

        Parameters are sorted, None values dropped, sequences comma-joined,
        so equal queries share a key and any change produces a new one.
        """
        parts = [endpoint]
        if params:
            items = []
            for name, value in sorted(params.items()):
                if value is None:
                    continue
                if isinstance(value, (list, tuple, set, frozenset)):
                    value = ",".join(str(v) for v in value)
                items.append(f"{name}={value}")
            if items:
                parts.append("&".join(items))
        if next_token:
            parts.append(next_token)
        return ":".join(parts)

    async def get(self, key: str) -> Any | None:
        """
        Get a value, checking memory first and then the persistent tier.

        Returns None on a miss.
        """
        now = self._clock()
        self._maybe_sweep(now)

        entry = self._memory.get(key)
        if entry is not None and entry.is_expired(now):
            del self._memory[key]
            self._log(f"EXPIRED: {key[:50]}")
            entry = None

        if entry is not None:
            entry.last_accessed_at = now
            entry.access_count += 1
            self._record_hit()
            self._log(f"HIT (memory): {key[:50]}")
            return entry.value

        if self._persistent_ready:
            stored = await self._read_persistent(key, now)
            if stored is not None:
                value, expires_at = stored
                self._store(
                    key,
                    CacheEntry(
                        value=value,
                        created_at=now,
                        last_accessed_at=now,
                        access_count=1,
                        expires_at=expires_at,
                    ),
                )
                self._record_hit()
                self._log(f"HIT (persistent): {key[:50]}")
                return value

        self._record_miss()
        self._log(f"MISS: {key[:50]}")
        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float | timedelta | None = None,
    ) -> None:
        """
        Set a value in both tiers.

        Args:
            key: Cache key
            value: Value to cache; must be JSON serializable for the disk tier.
                   The disk copy is lossy: tuples read back as lists and
                   non-string dict keys as strings.
            ttl: Seconds (or timedelta) to live, default config.default_ttl;
                 0 stores without expiry
        """
        now = self._clock()
        ttl_seconds = self._ttl_seconds(ttl)
        expires_at = now + ttl_seconds if ttl_seconds > 0 else None

        self._store(
            key,
            CacheEntry(
                value=value,
                created_at=now,
                last_accessed_at=now,
                expires_at=expires_at,
            ),
        )

        if self._persistent_ready:
            try:
                await self._write_persistent(key, value, expires_at, now)
            except (OSError, TypeError, ValueError) as e:
                logger.warning(f"Failed to write to persistent cache {key[:50]}: {e}")
                # A file left from an earlier set would outlive this value
                try:
                    await asyncio.to_thread(self._unlink, self._path_for(key))
                except OSError as unlink_error:
                    logger.warning(
                        f"Failed to drop stale persistent cache {key[:50]}: {unlink_error}"
                    )

        self._log(f"SET: {key[:50]} (TTL: {ttl_seconds}s)")

    async def delete(self, key: str) -> bool:
        """Delete a key from both tiers. Returns whether anything was removed."""
        deleted = self._memory.pop(key, None) is not None

        if self._persistent_ready:
            try:
                if await asyncio.to_thread(self._unlink, self._path_for(key)):
                    deleted = True
            except OSError as e:
                logger.warning(f"Failed to delete from persistent cache {key[:50]}: {e}")

        self._log(f"DELETE: {key[:50]} (deleted={deleted})")
        return deleted

    async def invalidate(self, pattern: str) -> int:
        """
        Delete every key matching a glob-style pattern, e.g. "orders:*:123:*".

        Returns:
            Number of distinct keys removed across both tiers
        """
        removed = {k for k in self._memory if fnmatch.fnmatchcase(k, pattern)}
        for key in removed:
            del self._memory[key]

        if self._persistent_ready:
            try:
                removed |= await asyncio.to_thread(self._invalidate_files, pattern)
            except OSError as e:
                logger.warning(f"Failed to invalidate persistent cache '{pattern}': {e}")

        if removed:
            self._log(f"INVALIDATE: {len(removed)} entries matching '{pattern}'")
        return len(removed)

    async def clear(self) -> None:
        """Clear both tiers and reset statistics."""
        count = len(self._memory)
        self._memory.clear()
        self._stats = CacheStats()

        if self._persistent_ready:
            try:
                await asyncio.to_thread(self._clear_files)
            except OSError as e:
                logger.warning(f"Failed to clear persistent cache: {e}")

        self._log(f"CLEAR: {count} entries removed")

    async def with_cache(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        ttl: float | timedelta | None = None,
    ) -> T:
        """
        Return the cached value for key, or await fn() and cache its result.

        Concurrent misses on one key each call fn(); the last write wins.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        result = await fn()
        await self.set(key, result, ttl)
        return result

    async def cleanup_expired(self) -> int:
        """Remove all expired memory entries. Returns count of removed entries."""
        return self._sweep(self._clock())

    def get_stats(self) -> CacheStats:
        """Get a snapshot of cache statistics."""
        return replace(self._stats, size=len(self._memory))

    # Memory tier

    def _store(self, key: str, entry: CacheEntry[Any]) -> None:
        if key not in self._memory and len(self._memory) >= self.config.max_entries:
            self._evict_least_recent()
        self._memory[key] = entry

    def _evict_least_recent(self) -> None:
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].last_accessed_at,
        )
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def _maybe_sweep(self, now: float) -> None:
        period = self.config.check_period
        if period and now - self._last_sweep >= period:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        self._last_sweep = now
        expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")
        return len(expired_keys)

    def _ttl_seconds(self, ttl: float | timedelta | None) -> float:
        if ttl is None:
            ttl = self.config.default_ttl
        if isinstance(ttl, timedelta):
            return ttl.total_seconds()
        return float(ttl)

    def _record_hit(self) -> None:
        if self.config.collect_stats:
            self._stats.hits += 1

    def _record_miss(self) -> None:
        if self.config.collect_stats:
            self._stats.misses += 1

    # Persistent tier

    def _path_for(self, key: str) -> Path:
        # TODO: store the raw key in the payload and compare it on read; long
        # keys overflow filename limits and case-insensitive filesystems can
        # fold two encodings onto one file, neither of which is detected.
        return self._persistent_dir / f"{encode_key(key)}{CACHE_FILE_SUFFIX}"

    async def _read_persistent(self, key: str, now: float) -> tuple[Any, float | None] | None:
        """Return (value, expires_at seconds) from disk, or None."""
        path = self._path_for(key)
        try:
            payload = await asyncio.to_thread(self._read_file, path)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read from persistent cache {key[:50]}: {e}")
            return None

        if not isinstance(payload, dict) or "value" not in payload:
            return None

        expires_at_ms = payload.get("expiresAt")
        if expires_at_ms is not None and not isinstance(expires_at_ms, (int, float)):
            return None
        expires_at = expires_at_ms / 1000 if expires_at_ms is not None else None
        if expires_at is not None and now >= expires_at:
            try:
                await asyncio.to_thread(self._unlink, path)
            except OSError as e:
                logger.warning(f"Failed to remove expired cache file {path.name}: {e}")
            self._log(f"EXPIRED (persistent): {key[:50]}")
            return None

        return payload["value"], expires_at

    async def _write_persistent(
        self, key: str, value: Any, expires_at: float | None, now: float
    ) -> None:
        payload: dict[str, Any] = {"value": value, "createdAt": int(now * 1000)}
        if expires_at is not None:
            payload["expiresAt"] = int(expires_at * 1000)
        data = json.dumps(payload)
        await asyncio.to_thread(self._path_for(key).write_text, data, "utf-8")

    @staticmethod
    def _read_file(path: Path) -> Any:
        try:
            data = path.read_text("utf-8")
        except FileNotFoundError:
            return None
        return json.loads(data)

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _cache_files(self) -> list[Path]:
        return list(self._persistent_dir.glob(f"*{CACHE_FILE_SUFFIX}"))

    def _invalidate_files(self, pattern: str) -> "set[str]":
        removed = set()
        for path in self._cache_files():
            try:
                key = decode_key(path.name[: -len(CACHE_FILE_SUFFIX)])
            except (binascii.Error, UnicodeDecodeError):
                continue
            if fnmatch.fnmatchcase(key, pattern) and self._unlink(path):
                removed.add(key)
        return removed

    def _clear_files(self) -> None:
        for path in self._cache_files():
            self._unlink(path)

    def _log(self, message: str) -> None:
        logger.debug(f"[CacheManager] {message}")
