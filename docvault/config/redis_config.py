"""
Redis Configuration

Connection settings for the Redis instance that holds the metadata
cache, the notification queues and the task locks.
"""

import os
import threading
from typing import Optional

import redis

from docvault.infrastructure.redis_repository import RedisConnectionManager


class RedisConfig:
    """REDIS_* connection settings; REDIS_URL wins over the individual fields."""

    def __init__(self):
        self.host = os.getenv("REDIS_HOST", "localhost")
        self.port = int(os.getenv("REDIS_PORT", 6379))
        self.db = int(os.getenv("REDIS_DB", 0))
        self.password = os.getenv("REDIS_PASSWORD")
        self.max_connections = int(os.getenv("REDIS_MAX_CONNECTIONS", 20))

        url = os.getenv("REDIS_URL")
        if url:
            params = redis.connection.parse_url(url)
            self.host = params.get("host", self.host)
            self.port = params.get("port", self.port)
            self.db = params.get("db", self.db)
            self.password = params.get("password", self.password)


_manager: Optional[RedisConnectionManager] = None
_manager_lock = threading.Lock()


def get_redis_client(config: Optional[RedisConfig] = None) -> redis.Redis:
    """
    Return the pooled client, creating the pool on first call.

    Args:
        config: Connection settings; read from the environment when None
    """
    global _manager

    with _manager_lock:
        if _manager is None:
            config = config or RedisConfig()
            _manager = RedisConnectionManager(
                host=config.host,
                port=config.port,
                db=config.db,
                password=config.password,
                max_connections=config.max_connections,
            )
        return _manager.client
