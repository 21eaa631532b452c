"""
Redis connection shared by the rate-limit counter store.
"""
import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class RedisClient:
    """Process-wide Redis client holder."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    def get_instance(cls, host: str = "localhost", port: int = 6379, db: int = 0) -> redis.Redis:
        """Get or create the Redis client. Connecting is lazy."""
        if cls._instance is None:
            cls._instance = redis.Redis(
                host=host,
                port=port,
                db=db,
                socket_connect_timeout=2,
                socket_timeout=2,
                health_check_interval=10,
                decode_responses=True,
            )
            logger.info(f"Redis counter store configured at {host}:{port}/{db}")
        return cls._instance

    @classmethod
    def close(cls):
        """Close Redis connection."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None
            logger.info("Redis connection closed")


def get_redis_client(host: str = "localhost", port: int = 6379, db: int = 0) -> redis.Redis:
    """Get Redis client."""
    return RedisClient.get_instance(host, port, db)
