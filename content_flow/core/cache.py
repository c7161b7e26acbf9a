"""
Content-addressed response cache.

Identical requests map to the same fingerprint, so a repeated generate or
improve call is answered without touching a provider or the quota ledger.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import CacheBackendError
from .requests import NormalizedRequest, ProviderResult
from content_flow.storage.cache_backends import CacheBackend
from content_flow.storage.models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
KEY_PREFIX = "cf"


def fingerprint(request: NormalizedRequest) -> str:
    """Derive the cache key for a request.

    The key covers the operation, the text and every sampling parameter
    (including ``extra``). ``provider_hint`` is left out: the same request
    answered by another provider is still the same answer to the caller.

    Returns:
        ``cf:<operation>:<sha256 hex>``, at most 77 characters
    """
    canonical = json.dumps(
        {
            "operation": request.operation.value,
            "prompt_or_content": request.prompt_or_content,
            "parameters": request.parameters.to_dict(),
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}:{request.operation.value}:{digest}"


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    writes: int
    deletes: int
    errors: int
    backend: str = ""
    enabled: bool = True
    # None when the backend could not be counted
    size: Optional[int] = None

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class CacheManager:
    """TTL cache over a pluggable backend.

    Backend failures never reach the caller: a failed read is a miss, a
    failed write or delete returns False. Both are counted in ``errors``.
    """

    def __init__(
        self,
        backend: CacheBackend,
        enabled: bool = True,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.backend = backend
        self.enabled = enabled
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._deletes = 0
        self._errors = 0

    def _count(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def get(self, key: str) -> Optional[ProviderResult]:
        if not self.enabled:
            self._count("_misses")
            return None

        try:
            entry = self.backend.get(key)
        except CacheBackendError as e:
            self._count("_errors")
            self._count("_misses")
            logger.warning("Cache read failed for %s, treating as miss: %s", key[:16], e)
            return None

        if entry is None:
            self._count("_misses")
            logger.debug("Cache MISS for key %s", key[:16])
            return None

        if entry.is_expired(self._clock()):
            self._count("_misses")
            logger.debug("Cache EXPIRED for key %s", key[:16])
            self._evict(key)
            return None

        self._count("_hits")
        logger.debug("Cache HIT for key %s", key[:16])
        return entry.value

    def _evict(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except CacheBackendError as e:
            self._count("_errors")
            logger.warning("Lazy eviction failed for %s: %s", key[:16], e)

    def set(self, key: str, value: ProviderResult, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = self._clock()
        entry = CacheEntry(key=key, value=value, created_at=now, expires_at=now + ttl)
        try:
            self.backend.set(entry)
        except CacheBackendError as e:
            self._count("_errors")
            logger.warning("Cache write failed for %s: %s", key[:16], e)
            return False
        self._count("_writes")
        return True

    def delete(self, key: str) -> bool:
        try:
            removed = self.backend.delete(key)
        except CacheBackendError as e:
            self._count("_errors")
            logger.warning("Cache delete failed for %s: %s", key[:16], e)
            return False
        if removed:
            self._count("_deletes")
        return removed

    def flush(self) -> bool:
        try:
            flushed = self.backend.flush()
        except CacheBackendError as e:
            self._count("_errors")
            logger.warning("Cache flush failed: %s", e)
            return False
        logger.info("Cache flushed")
        return flushed

    def cleanup_expired(self) -> int:
        """Remove every entry whose TTL has run out, read or not.

        Reads already evict expired entries one at a time; this sweeps the
        ones nobody asks for again. Returns how many entries were removed,
        0 when the backend failed.
        """
        try:
            removed = self.backend.purge_expired(self._clock())
        except CacheBackendError as e:
            self._count("_errors")
            logger.warning("Cache cleanup failed: %s", e)
            return 0
        if removed:
            with self._lock:
                self._deletes += removed
        logger.info("Cache cleanup removed %d expired entries", removed)
        return removed

    def _size(self) -> Optional[int]:
        try:
            return self.backend.size()
        except CacheBackendError as e:
            logger.warning("Cache size unavailable: %s", e)
            return None

    def stats(self) -> CacheStats:
        size = self._size()
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                writes=self._writes,
                deletes=self._deletes,
                errors=self._errors,
                backend=self.backend.kind,
                enabled=self.enabled,
                size=size,
            )
