"""
Redis Metadata Cache Implementation

Concrete Redis-based implementation of MetadataCache.
Entries expire after a TTL and the number of live entries is bounded by
a sorted-set index ordered by insertion time.
"""

import asyncio
import logging
import time
from typing import Optional

from docvault.domain.file_storage.entities import FileMetadata
from docvault.domain.file_storage.repositories import MetadataCache

logger = logging.getLogger(__name__)


class RedisMetadataCache(MetadataCache):
    """
    Redis-based implementation of the hot metadata cache.

    Every Redis failure is logged and treated as a miss or a no-op; the
    catalog is always consulted on a miss so correctness never depends
    on the cache.
    """

    INDEX_KEY = "file:index"

    def __init__(self, redis_repository, ttl_seconds: int = 300, max_entries: int = 1000,
                 metrics=None):
        """
        Initialize Redis metadata cache.

        Args:
            redis_repository: RedisRepository instance
            ttl_seconds: Time-to-live of each entry
            max_entries: Maximum number of entries kept
            metrics: Optional MetricsRecorder for hit/miss counters
        """
        self.redis_repo = redis_repository
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.metrics = metrics

    @staticmethod
    def _make_key(file_id: int) -> str:
        return f"file:{file_id}"

    async def get(self, file_id: int) -> Optional[FileMetadata]:
        key = self._make_key(file_id)
        try:
            data = await asyncio.to_thread(self.redis_repo.get_json, key)
            if data is None:
                logger.debug(f"Cache miss for metadata: {key}")
                self._record("get", hit=False)
                return None
            logger.debug(f"Cache hit for metadata: {key}")
            self._record("get", hit=True)
            return FileMetadata.from_dict(data)
        except Exception as e:
            logger.error(f"Error retrieving cached metadata for {key}: {e}")
            self._record("get", hit=False)
            return None

    async def set(self, metadata: FileMetadata) -> None:
        key = self._make_key(metadata.id)
        try:
            await asyncio.to_thread(self._store, key, metadata)
            logger.debug(f"Cached metadata: {key} (TTL: {self.ttl_seconds}s)")
        except Exception as e:
            logger.error(f"Error caching metadata for {key}: {e}")

    def _store(self, key: str, metadata: FileMetadata) -> None:
        if not self.redis_repo.set_json(key, metadata.to_dict(), ttl=self.ttl_seconds):
            logger.warning(f"Failed to cache metadata: {key}")
            return
        self.redis_repo.index_add(self.INDEX_KEY, key, time.time())
        evicted = self.redis_repo.index_pop_oldest(self.INDEX_KEY, self.max_entries)
        if evicted:
            self.redis_repo.delete(*evicted)
            logger.debug(f"Evicted {len(evicted)} cache entries over the {self.max_entries} limit")

    async def evict(self, file_id: int) -> None:
        key = self._make_key(file_id)
        try:
            await asyncio.to_thread(self._remove, key)
        except Exception as e:
            logger.error(f"Error evicting cached metadata for {key}: {e}")

    def _remove(self, key: str) -> None:
        self.redis_repo.delete(key)
        self.redis_repo.index_remove(self.INDEX_KEY, key)

    async def ping(self) -> bool:
        try:
            return bool(await asyncio.to_thread(self.redis_repo.redis.ping))
        except Exception as e:
            logger.warning(f"Metadata cache ping failed: {e}")
            return False

    def _record(self, operation: str, hit: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_cache(operation, hit)
