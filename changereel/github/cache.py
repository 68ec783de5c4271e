"""In-memory TTL cache for GitHub API responses."""

import asyncio
import json
import threading
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from changereel.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENTRY_SIZE = 1024


class CacheConfig(BaseModel):
    """Cache limits and defaults."""

    default_ttl: float = Field(default=300.0, gt=0, description="Default TTL in seconds")
    max_entries: int = Field(default=1000, ge=1)
    max_memory: int = Field(default=50 * 1024 * 1024, ge=1, description="Bytes")
    cleanup_interval: float = Field(default=60.0, gt=0, description="Seconds")
    enable_stats: bool = True


class CacheStats(BaseModel):
    """Snapshot of cache counters."""

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    entries: int = 0
    memory_usage: int = 0
    evictions: int = 0


class _CacheEntry:
    __slots__ = ("key", "data", "created_at", "expires_at", "size")

    def __init__(self, key: str, data: Any, created_at: float, expires_at: float, size: int):
        self.key = key
        self.data = data
        self.created_at = created_at
        self.expires_at = expires_at
        self.size = size


def estimate_size(value: Any) -> int:
    """Approximate the memory footprint of a value from its JSON form."""
    try:
        return len(json.dumps(value)) * 2
    except (TypeError, ValueError):
        return DEFAULT_ENTRY_SIZE


class MemoryCache:
    """
    TTL key/value cache with entry-count and memory limits.

    Expired entries are evicted lazily on ``get``/``has`` and in bulk by
    ``cleanup()``. When an insertion would exceed either limit the oldest
    entry by creation time is evicted until it fits.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._memory_usage = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._cleanup_task: Optional[asyncio.Task] = None

    def get(self, key: str) -> Any:
        """Return the cached value, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._record_miss()
                return None
            if self._is_expired(entry):
                self._remove(entry)
                self._evictions += 1
                self._record_miss()
                return None
            self._record_hit()
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store
            ttl: Time to live in seconds, defaults to config.default_ttl
        """
        now = self._clock()
        size = estimate_size(value)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                self._remove(existing)
            self._ensure_capacity(size)
            entry = _CacheEntry(
                key=key,
                data=value,
                created_at=now,
                expires_at=now + (ttl if ttl is not None else self.config.default_ttl),
                size=size,
            )
            self._entries[key] = entry
            self._memory_usage += size

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._is_expired(entry):
                self._remove(entry)
                self._evictions += 1
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            self._remove(entry)
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._memory_usage = 0

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def cleanup(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        with self._lock:
            expired = [e for e in self._entries.values() if self._is_expired(e)]
            for entry in expired:
                self._remove(entry)
            self._evictions += len(expired)
        if expired:
            logger.debug("Cache cleanup evicted expired entries", count=len(expired))
        return len(expired)

    def get_stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / total * 100) if total else 0.0,
                entries=len(self._entries),
                memory_usage=self._memory_usage,
                evictions=self._evictions,
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def start_cleanup_timer(self) -> None:
        """Run cleanup() every cleanup_interval seconds on the running loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup_timer(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup()

    # Callers must hold self._lock for the helpers below.

    def _is_expired(self, entry: _CacheEntry) -> bool:
        return self._clock() > entry.expires_at

    def _remove(self, entry: _CacheEntry) -> None:
        del self._entries[entry.key]
        self._memory_usage -= entry.size

    def _ensure_capacity(self, incoming_size: int) -> None:
        while self._entries and self._memory_usage + incoming_size > self.config.max_memory:
            self._evict_oldest()
        while self._entries and len(self._entries) >= self.config.max_entries:
            self._evict_oldest()

    def _evict_oldest(self) -> None:
        oldest = min(self._entries.values(), key=lambda e: e.created_at)
        self._remove(oldest)
        self._evictions += 1

    def _record_hit(self) -> None:
        if self.config.enable_stats:
            self._hits += 1

    def _record_miss(self) -> None:
        if self.config.enable_stats:
            self._misses += 1


class CacheTTL:
    """TTL presets in seconds."""

    SHORT = 30.0
    MEDIUM = 300.0
    LONG = 1800.0
    DEV = 10.0


class CacheKeys:
    """Deterministic cache key builders for GitHub lookups."""

    @staticmethod
    def diff(
        owner: str,
        repo: str,
        base: str,
        head: str,
        max_files: Optional[int] = None,
        include_patches: bool = True,
    ) -> str:
        key = f"diff:{owner}:{repo}:{base}:{head}"
        if max_files is not None:
            key += f":maxFiles:{max_files}"
        if not include_patches:
            key += ":noPatches"
        return key

    @staticmethod
    def diff_raw(owner: str, repo: str, base: str, head: str) -> str:
        return f"diff-raw:{owner}:{repo}:{base}:{head}"

    @staticmethod
    def diff_stats(owner: str, repo: str, base: str, head: str) -> str:
        return f"diff-stats:{owner}:{repo}:{base}:{head}"

    @staticmethod
    def commit(owner: str, repo: str, sha: str) -> str:
        return f"commit:{owner}:{repo}:{sha}"

    @staticmethod
    def commits(
        owner: str,
        repo: str,
        branch: Optional[str] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
        per_page: Optional[int] = None,
        page: Optional[int] = None,
    ) -> str:
        parts = ["commits", owner, repo]
        for label, value in (
            ("branch", branch),
            ("since", since),
            ("until", until),
            ("perPage", per_page),
            ("page", page),
        ):
            if value is not None:
                parts.extend([label, str(value)])
        return ":".join(parts)

    @staticmethod
    def repository(owner: str, repo: str) -> str:
        return f"repo:{owner}:{repo}"

    @staticmethod
    def rate_limit() -> str:
        return "rate-limit:github"

    @staticmethod
    def validate_commit(owner: str, repo: str, sha: str) -> str:
        return f"validate:commit:{owner}:{repo}:{sha}"

    @staticmethod
    def validate_diff(owner: str, repo: str, base: str, head: str) -> str:
        return f"validate:diff:{owner}:{repo}:{base}:{head}"
