import os
import time
from typing import Optional

import redis
from loguru import logger


class Idem:
    """Redis-based guard against webhook redelivery (Twilio MessageSid, monday triggerUuid)."""

    def __init__(self, redis_url: Optional[str] = None, prefix: str = "idem"):
        """Initialize Redis connection."""
        self.prefix = prefix
        self._memory_keys = set()
        try:
            self.r = redis.from_url(redis_url or os.getenv("REDIS_URL", "redis://localhost:6379"))
            # Test connection
            self.r.ping()
            logger.info("Redis connection established successfully")
        except redis.RedisError as e:
            logger.error(f"Redis connection failed: {e}")
            # Fallback to in-memory storage, only deduplicates within this process
            self.r = None

    def check_and_set(self, key: str, ttl: int = 3600) -> bool:
        """
        Check if key exists and set it if it doesn't.

        Args:
            key: Delivery identifier of the inbound webhook
            ttl: Time to live in seconds (default: 1 hour)

        Returns:
            True if key was set (first delivery), False if already seen
        """
        if not key:
            logger.warning("Empty key provided to idempotency check")
            return False

        try:
            if self.r:
                result = self.r.set(
                    name=f"{self.prefix}:{key}",
                    value=int(time.time()),
                    ex=ttl,
                    nx=True
                )
                return result is True
            else:
                if key in self._memory_keys:
                    return False
                self._memory_keys.add(key)
                return True

        except redis.RedisError as e:
            logger.error(f"Idempotency check failed: {e}")
            # Fail open - allow processing to continue
            return True

    def clear_key(self, key: str) -> bool:
        """Manually clear a key (for testing/debugging)."""
        try:
            if self.r:
                return bool(self.r.delete(f"{self.prefix}:{key}"))
            else:
                self._memory_keys.discard(key)
                return True
        except redis.RedisError as e:
            logger.error(f"Failed to clear key: {e}")
            return False

    @property
    def connected(self) -> bool:
        return self.r is not None
