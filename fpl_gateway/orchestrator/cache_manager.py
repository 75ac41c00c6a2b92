"""
Two-tier cache for upstream payloads.

A bounded in-memory LRU tier sits in front of a SQLite persistent tier.
Entries carry the validators (ETag, Last-Modified) needed for conditional
requests, so a 304 from the provider refreshes an entry without a body.
"""

import json
import logging
import sqlite3
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from fpl_gateway.config import CacheConfig
from fpl_gateway.orchestrator.ttl_policy import TTL_POLICIES, ResourceClass, TTLPolicy
from fpl_gateway.utils.exceptions import CacheError

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """
    One cached upstream payload.

    Attributes:
        resource_key: Normalized key (source-specific path and parameters)
        payload: Raw provider JSON
        fetched_at: Epoch seconds of the last fetch or 304 refresh
        ttl: Seconds the entry stays fresh
        resource_class: TTL category of the payload
        etag: ETag validator from the provider, if any
        last_modified: Last-Modified validator from the provider, if any
        hit_count: Served reads since the entry was written
    """

    resource_key: str
    payload: Any
    fetched_at: float
    ttl: float
    resource_class: ResourceClass
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    hit_count: int = 0
    size_bytes: int = 0

    def __post_init__(self):
        if not self.size_bytes:
            self.size_bytes = _payload_size(self.payload)

    @property
    def expires_at(self) -> float:
        return self.fetched_at + self.ttl

    def is_valid(self, now: float) -> bool:
        return now - self.fetched_at <= self.ttl


def _payload_size(payload: Any) -> int:
    return len(json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8"))


class MemoryTier:
    """
    In-memory LRU tier bounded by entry count and approximate payload bytes.

    Not thread-safe on its own; TieredCache serializes access.
    """

    def __init__(self, max_entries: int, max_bytes: int):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._bytes = 0
        self.evictions = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, entry: CacheEntry) -> None:
        self.delete(entry.resource_key)

        if entry.size_bytes > self.max_bytes:
            logger.debug(
                f"Entry too large for memory tier: {entry.resource_key}",
                extra={"size_bytes": entry.size_bytes, "max_bytes": self.max_bytes},
            )
            return

        self._entries[entry.resource_key] = entry
        self._bytes += entry.size_bytes

        # Evict least recently used until both bounds hold
        while len(self._entries) > self.max_entries or self._bytes > self.max_bytes:
            _, evicted = self._entries.popitem(last=False)
            self._bytes -= evicted.size_bytes
            self.evictions += 1
            logger.debug(f"Evicted from memory tier: {evicted.resource_key}")

    def delete(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._bytes -= entry.size_bytes
        return True

    def sweep(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            self.delete(key)
        return len(expired)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._bytes = 0
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def get_statistics(self, now: float) -> dict:
        entries = list(self._entries.values())
        top = sorted(entries, key=lambda e: e.hit_count, reverse=True)[:5]
        return {
            "entries": len(entries),
            "valid_entries": sum(1 for e in entries if e.is_valid(now)),
            "total_hits": sum(e.hit_count for e in entries),
            "size_bytes": self._bytes,
            "size_mb": round(self._bytes / (1024 * 1024), 2),
            "max_entries": self.max_entries,
            "max_bytes": self.max_bytes,
            "evictions": self.evictions,
            "most_accessed": [
                {"resource_key": e.resource_key, "hit_count": e.hit_count} for e in top
            ],
        }


class PersistentTier:
    """
    SQLite-backed tier, partitioned by source name.

    Several partitions may share one database file. The oldest accessed
    entries of a partition are evicted once it exceeds max_entries.

    Attributes:
        db_path: Path to SQLite database file
        partition: Source name owning the rows
        max_entries: Row bound for this partition
    """

    def __init__(self, db_path: Path, partition: str, max_entries: int):
        self.db_path = Path(db_path)
        self.partition = partition
        self.max_entries = max_entries
        self.evictions = 0
        self._connection: Optional[sqlite3.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self) -> None:
        """Create database schema if it doesn't exist."""
        try:
            cursor = self._get_connection().cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    partition TEXT NOT NULL,
                    resource_key TEXT NOT NULL,
                    resource_class TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    fetched_at REAL NOT NULL,
                    ttl REAL NOT NULL,
                    expires_at REAL NOT NULL,
                    etag TEXT,
                    last_modified TEXT,
                    hit_count INTEGER DEFAULT 0,
                    last_accessed REAL NOT NULL,
                    PRIMARY KEY (partition, resource_key)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_partition_expires
                ON cache_entries(partition, expires_at)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_partition_accessed
                ON cache_entries(partition, last_accessed)
            """)

        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to initialize database: {e}",
                operation="initialize",
                db_path=str(self.db_path)
            )

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,  # Admin threads read statistics
                isolation_level=None  # Autocommit
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def get(self, key: str) -> Optional[CacheEntry]:
        """Load an entry regardless of freshness."""
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("""
                SELECT * FROM cache_entries
                WHERE partition = ? AND resource_key = ?
            """, (self.partition, key))
            row = cursor.fetchone()
            if row is None:
                return None

            return CacheEntry(
                resource_key=row["resource_key"],
                payload=json.loads(row["payload"]),
                fetched_at=row["fetched_at"],
                ttl=row["ttl"],
                resource_class=ResourceClass(row["resource_class"]),
                etag=row["etag"],
                last_modified=row["last_modified"],
                hit_count=row["hit_count"],
                size_bytes=len(row["payload"].encode("utf-8")),
            )

        except (sqlite3.Error, json.JSONDecodeError, ValueError) as e:
            raise CacheError(
                f"Failed to read from cache: {e}",
                operation="read",
                cache_key=key
            )

    def put(self, entry: CacheEntry, now: float) -> None:
        """Insert or replace an entry, then enforce the partition bound."""
        try:
            payload_json = json.dumps(entry.payload, ensure_ascii=False, default=str)
            cursor = self._get_connection().cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO cache_entries (
                    partition, resource_key, resource_class, payload,
                    fetched_at, ttl, expires_at, etag, last_modified,
                    hit_count, last_accessed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                self.partition,
                entry.resource_key,
                entry.resource_class.value,
                payload_json,
                entry.fetched_at,
                entry.ttl,
                entry.expires_at,
                entry.etag,
                entry.last_modified,
                entry.hit_count,
                now,
            ))
            self._enforce_bound()

        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CacheError(
                f"Failed to write to cache: {e}",
                operation="write",
                cache_key=entry.resource_key
            )

    def touch(self, entry: CacheEntry, now: float) -> None:
        """Write back hit count and freshness after a served read or revalidation."""
        try:
            self._get_connection().execute("""
                UPDATE cache_entries
                SET hit_count = ?, fetched_at = ?, expires_at = ?, last_accessed = ?
                WHERE partition = ? AND resource_key = ?
            """, (
                entry.hit_count,
                entry.fetched_at,
                entry.expires_at,
                now,
                self.partition,
                entry.resource_key,
            ))
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to update cache entry: {e}",
                operation="touch",
                cache_key=entry.resource_key
            )

    def _enforce_bound(self) -> None:
        cursor = self._get_connection().cursor()
        cursor.execute(
            "SELECT COUNT(*) AS count FROM cache_entries WHERE partition = ?",
            (self.partition,),
        )
        overflow = cursor.fetchone()["count"] - self.max_entries
        if overflow <= 0:
            return

        cursor.execute("""
            DELETE FROM cache_entries
            WHERE partition = ? AND resource_key IN (
                SELECT resource_key FROM cache_entries
                WHERE partition = ?
                ORDER BY last_accessed ASC
                LIMIT ?
            )
        """, (self.partition, self.partition, overflow))
        self.evictions += cursor.rowcount
        logger.debug(f"Evicted {cursor.rowcount} entries from persistent tier {self.partition}")

    def delete(self, key: str) -> bool:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "DELETE FROM cache_entries WHERE partition = ? AND resource_key = ?",
                (self.partition, key),
            )
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheError(f"Failed to delete cache entry: {e}", operation="delete", cache_key=key)

    def sweep(self, now: float) -> int:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "DELETE FROM cache_entries WHERE partition = ? AND expires_at < ?",
                (self.partition, now),
            )
            return cursor.rowcount
        except sqlite3.Error as e:
            raise CacheError(f"Failed to sweep expired entries: {e}", operation="sweep")

    def clear(self) -> int:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("DELETE FROM cache_entries WHERE partition = ?", (self.partition,))
            return cursor.rowcount
        except sqlite3.Error as e:
            raise CacheError(f"Failed to clear cache partition: {e}", operation="clear")

    def get_statistics(self, now: float) -> dict:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("""
                SELECT
                    COUNT(*) AS count,
                    SUM(CASE WHEN expires_at < ? THEN 1 ELSE 0 END) AS expired,
                    SUM(hit_count) AS total_hits,
                    SUM(LENGTH(payload)) AS size_bytes
                FROM cache_entries
                WHERE partition = ?
            """, (now, self.partition))
            row = cursor.fetchone()

            cursor.execute("""
                SELECT resource_key, hit_count, last_accessed
                FROM cache_entries
                WHERE partition = ?
                ORDER BY hit_count DESC
                LIMIT 5
            """, (self.partition,))
            most_accessed = [
                {
                    "resource_key": r["resource_key"],
                    "hit_count": r["hit_count"],
                    "last_accessed": _iso(r["last_accessed"]),
                }
                for r in cursor.fetchall()
            ]

            total = row["count"] or 0
            expired = row["expired"] or 0
            size_bytes = row["size_bytes"] or 0
            return {
                "entries": total,
                "valid_entries": total - expired,
                "expired_entries": expired,
                "total_hits": row["total_hits"] or 0,
                "size_bytes": size_bytes,
                "size_mb": round(size_bytes / (1024 * 1024), 2),
                "max_entries": self.max_entries,
                "evictions": self.evictions,
                "most_accessed": most_accessed,
                "db_path": str(self.db_path),
            }

        except sqlite3.Error as e:
            raise CacheError(f"Failed to retrieve statistics: {e}", operation="statistics")

    def close(self) -> None:
        """Close database connection gracefully."""
        if self._connection:
            try:
                self._connection.close()
                self._connection = None
                logger.debug("Cache database connection closed")
            except sqlite3.Error as e:
                logger.error(f"Error closing database connection: {e}")

    def __del__(self):
        self.close()


class TieredCache:
    """
    Memory-then-SQLite cache for one source partition.

    Features:
    - LRU memory tier bounded by entries and bytes
    - SQLite tier for resource classes whose policy persists
    - Persistent hits promoted to memory
    - Expired entries never served (peek exposes them for validators)
    - 304 revalidation without body parse
    - Hit/miss statistics per tier

    Example:
        >>> cache = TieredCache("rapidapi_fpl", db_path=Path("data/fpl_cache.db"))
        >>> cache.set("fixtures", payload, ResourceClass.FIXTURES)
        >>> entry = cache.get("fixtures")
    """

    def __init__(
        self,
        partition: str,
        db_path: Optional[Path] = None,
        memory_max_entries: Optional[int] = None,
        memory_max_bytes: Optional[int] = None,
        persistent_max_entries: Optional[int] = None,
        policies: Mapping[ResourceClass, TTLPolicy] = TTL_POLICIES,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize tiered cache.

        Args:
            partition: Source name used to partition the persistent tier
            db_path: SQLite path (defaults to CacheConfig.DB_PATH)
            memory_max_entries: Memory tier entry bound
            memory_max_bytes: Memory tier byte bound
            persistent_max_entries: Persistent tier row bound
            policies: TTL policy table
            clock: Epoch-seconds clock (defaults to time.time)
        """
        self.partition = partition
        self.policies = policies
        self._clock = clock or time.time

        self.memory = MemoryTier(
            memory_max_entries or CacheConfig.MEMORY_MAX_ENTRIES,
            memory_max_bytes or CacheConfig.MEMORY_MAX_BYTES,
        )
        self.persistent = PersistentTier(
            db_path or CacheConfig.DB_PATH,
            partition,
            persistent_max_entries or CacheConfig.PERSISTENT_MAX_ENTRIES,
        )

        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "memory_hits": 0,
            "persistent_hits": 0,
            "misses": 0,
            "expired": 0,
            "writes": 0,
            "revalidations": 0,
        }

        logger.info(f"TieredCache initialized: partition={partition}, db={self.persistent.db_path}")

    def _persists(self, resource_class: ResourceClass) -> bool:
        return self.policies[resource_class].persist

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        """Find an entry in memory then SQLite, promoting persistent hits. Caller holds the lock."""
        entry = self.memory.get(key)
        if entry is not None:
            return entry

        entry = self.persistent.get(key)
        if entry is not None:
            self.memory.put(entry)
        return entry

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Serve a fresh entry and count the hit.

        Args:
            key: Resource key

        Returns:
            The entry if present and within its TTL, None otherwise

        Raises:
            CacheError: If the persistent tier cannot be read
        """
        with self._lock:
            now = self._clock()
            in_memory = self.memory.get(key) is not None
            entry = self._lookup(key)

            if entry is None:
                self._stats["misses"] += 1
                logger.debug(f"Cache miss: {self.partition}:{key}")
                return None

            if not entry.is_valid(now):
                self._stats["misses"] += 1
                self._stats["expired"] += 1
                logger.debug(f"Cache expired: {self.partition}:{key}")
                return None

            entry.hit_count += 1
            self._stats["hits"] += 1
            self._stats["memory_hits" if in_memory else "persistent_hits"] += 1
            if self._persists(entry.resource_class):
                self.persistent.touch(entry, now)

            logger.debug(f"Cache hit: {self.partition}:{key} (hits={entry.hit_count})")
            return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return an entry even if expired, without counting a hit."""
        with self._lock:
            return self._lookup(key)

    def set(
        self,
        key: str,
        payload: Any,
        resource_class: ResourceClass,
        ttl: Optional[float] = None,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> CacheEntry:
        """
        Store a freshly fetched payload.

        Args:
            key: Resource key
            payload: Raw provider JSON
            resource_class: TTL category
            ttl: Override TTL (defaults to the policy TTL)
            etag: ETag validator
            last_modified: Last-Modified validator

        Returns:
            The stored entry
        """
        with self._lock:
            now = self._clock()
            entry = CacheEntry(
                resource_key=key,
                payload=payload,
                fetched_at=now,
                ttl=ttl if ttl is not None else self.policies[resource_class].ttl,
                resource_class=resource_class,
                etag=etag,
                last_modified=last_modified,
            )

            self.memory.put(entry)
            if self._persists(resource_class):
                self.persistent.put(entry, now)

            self._stats["writes"] += 1
            logger.debug(
                f"Cached: {self.partition}:{key}",
                extra={"ttl": entry.ttl, "persisted": self._persists(resource_class)},
            )
            return entry

    def revalidate(self, key: str, ttl: Optional[float] = None) -> Optional[CacheEntry]:
        """
        Refresh an entry after a 304 Not Modified response.

        Resets fetched_at, increments hit_count and writes through to both
        tiers. The payload is not touched.

        Returns:
            The refreshed entry, or None if it was evicted meanwhile
        """
        with self._lock:
            now = self._clock()
            entry = self._lookup(key)
            if entry is None:
                return None

            entry.fetched_at = now
            if ttl is not None:
                entry.ttl = ttl
            entry.hit_count += 1

            self.memory.put(entry)
            if self._persists(entry.resource_class):
                self.persistent.touch(entry, now)

            self._stats["revalidations"] += 1
            logger.debug(f"Cache revalidated: {self.partition}:{key} (hits={entry.hit_count})")
            return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            in_memory = self.memory.delete(key)
            in_persistent = self.persistent.delete(key)
            return in_memory or in_persistent

    def sweep_expired(self) -> int:
        """
        Purge expired entries from both tiers.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            removed = self.memory.sweep(now) + self.persistent.sweep(now)

        if removed:
            logger.info(f"Swept {removed} expired cache entries from {self.partition}")
        return removed

    def clear(self) -> int:
        """Delete every entry of this partition (admin use)."""
        with self._lock:
            removed = self.memory.clear() + self.persistent.clear()
        logger.warning(f"Cleared cache partition {self.partition}")
        return removed

    def get_statistics(self) -> dict:
        """
        Get cache statistics for both tiers.

        Returns:
            Dictionary with hit/miss counters and per-tier details
        """
        with self._lock:
            now = self._clock()
            lookups = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0

            return {
                "partition": self.partition,
                **self._stats,
                "hit_rate_pct": round(hit_rate, 2),
                "memory": self.memory.get_statistics(now),
                "persistent": self.persistent.get_statistics(now),
            }

    def close(self) -> None:
        self.persistent.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"TieredCache(partition={self.partition}, memory={len(self.memory)}, "
            f"db_path={self.persistent.db_path})"
        )


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
