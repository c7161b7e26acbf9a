"""
Storage backends for the response cache.

Backends store and return CacheEntry objects and nothing else: expiry,
statistics and degradation on failure belong to the CacheManager. Every
library-level failure is re-raised as CacheBackendError.
"""

import json
import sqlite3
import threading
from typing import Any, Dict, Optional, Protocol

import redis

from content_flow.core.errors import CacheBackendError
from content_flow.core.requests import ProviderResult
from .db import DEFAULT_DB_PATH, get_connection, initialize_schema
from .models import CacheEntry


class CacheBackend(Protocol):
    kind: str

    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    def set(self, entry: CacheEntry) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def flush(self) -> bool:
        ...

    def purge_expired(self, now: float) -> int:
        ...

    def size(self) -> Optional[int]:
        ...


def _entry_to_payload(entry: CacheEntry) -> str:
    return json.dumps(
        {
            "value": entry.value.to_dict(),
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
        },
        sort_keys=True,
    )


def _payload_to_entry(key: str, payload: Any) -> CacheEntry:
    try:
        data: Dict[str, Any] = json.loads(payload)
    except ValueError as e:
        raise CacheBackendError(f"Corrupt cache entry for {key}: {e}") from e
    return _dict_to_entry(key, data)


def _dict_to_entry(key: str, data: Dict[str, Any]) -> CacheEntry:
    try:
        return CacheEntry(
            key=key,
            value=ProviderResult.from_dict(data["value"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise CacheBackendError(f"Corrupt cache entry for {key}: {e}") from e


class MemoryCacheBackend:
    """Process-local dictionary backend."""

    kind = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def flush(self) -> bool:
        with self._lock:
            self._entries.clear()
        return True

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def size(self) -> Optional[int]:
        return len(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCacheBackend:
    """Shared cache in Redis.

    Keys get a Redis TTL matching the entry's lifetime so the server evicts
    them on its own; the stored ``expires_at`` is still checked on read.
    """

    kind = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional["redis.Redis"] = None,
        socket_timeout: float = 2.0
    ):
        if client is None:
            client = redis.Redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self._client = client

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            payload = self._client.get(key)
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis get failed: {e}") from e
        if payload is None:
            return None
        return _payload_to_entry(key, payload)

    def set(self, entry: CacheEntry) -> None:
        ttl = max(1, int(round(entry.expires_at - entry.created_at)))
        try:
            self._client.set(entry.key, _entry_to_payload(entry), ex=ttl)
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis set failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(key))
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis delete failed: {e}") from e

    def flush(self) -> bool:
        """Remove every content-flow key, leaving other keys in the database alone."""
        try:
            keys = list(self._client.scan_iter(match="cf:*"))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis flush failed: {e}") from e
        return True

    def purge_expired(self, now: float) -> int:
        # Redis drops keys when their TTL runs out.
        return 0

    def size(self) -> Optional[int]:
        try:
            return sum(1 for _ in self._client.scan_iter(match="cf:*"))
        except redis.RedisError as e:
            raise CacheBackendError(f"Redis size failed: {e}") from e


class SqliteCacheBackend:
    """Durable cache in the content-flow database."""

    kind = "sqlite"

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        initialize_schema(db_path)

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT value, created_at, expires_at FROM cache_entry WHERE key = ?",
                    (key,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheBackendError(f"SQLite cache get failed: {e}") from e
        if row is None:
            return None
        try:
            value = json.loads(row[0])
        except ValueError as e:
            raise CacheBackendError(f"Corrupt cache entry for {key}: {e}") from e
        return _dict_to_entry(key, {"value": value, "created_at": row[1], "expires_at": row[2]})

    def set(self, entry: CacheEntry) -> None:
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_entry (key, value, created_at, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        entry.key,
                        json.dumps(entry.value.to_dict(), sort_keys=True),
                        entry.created_at,
                        entry.expires_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheBackendError(f"SQLite cache set failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute("DELETE FROM cache_entry WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheBackendError(f"SQLite cache delete failed: {e}") from e
        return cursor.rowcount > 0

    def flush(self) -> bool:
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("DELETE FROM cache_entry")
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheBackendError(f"SQLite cache flush failed: {e}") from e
        return True

    def purge_expired(self, now: float) -> int:
        """Delete entries whose lifetime ended before ``now``."""
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute("DELETE FROM cache_entry WHERE expires_at <= ?", (now,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheBackendError(f"SQLite cache purge failed: {e}") from e
        return cursor.rowcount

    def size(self) -> Optional[int]:
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute("SELECT COUNT(*) FROM cache_entry").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheBackendError(f"SQLite cache size failed: {e}") from e
        return row[0]
