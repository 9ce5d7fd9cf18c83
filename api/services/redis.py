# SPDX-License-Identifier: Apache-2.0

"""
Redis service for token revocation and rate limiting.

Every operation degrades gracefully: when Redis is unreachable the call is
logged and a neutral value is returned so requests keep flowing.
"""

import os
import json
import time
from typing import Optional, List, Dict, Any, Union
import redis
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class RedisConnectionError(Exception):
    """Raised when Redis connection fails."""
    pass


class RedisService:
    """
    Redis service built on the redis-py client.

    Provides the JWT token blocklist, fixed-window counters for rate
    limiting and small JSON values.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize the Redis service.

        Args:
            redis_url: Redis connection URL (redis://host:port)
            client: Pre-built client, skips connecting
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")

        if client is not None:
            self.client = client
            return

        try:
            self.client = redis.from_url(self.redis_url, decode_responses=True)
            self._test_connection()
            logger.info(f"Redis service initialized successfully at {self.redis_url}")

        except Exception as e:
            logger.error(f"Failed to initialize Redis service: {str(e)}")
            self.client = None

    def _test_connection(self) -> None:
        """Test Redis connection."""
        if not self.client:
            return

        try:
            if not self.client.ping():
                raise RedisConnectionError("Redis ping failed")
        except Exception as e:
            logger.error(f"Redis connection test failed: {str(e)}")
            raise RedisConnectionError(f"Redis connection failed: {str(e)}")

    def is_available(self) -> bool:
        """Check if Redis service is available."""
        return self.client is not None

    def set(self, key: str, value: Union[str, Dict, List], ttl: Optional[int] = None) -> bool:
        """
        Set a key-value pair in Redis.

        Args:
            key: Redis key
            value: Value to store (will be JSON serialized if not string)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self.client:
            logger.warning("Redis client not available, skipping set operation")
            return False

        with tracer.start_as_current_span("redis.set") as span:
            span.set_attributes({
                "redis.key": key,
                "redis.ttl": ttl or 0
            })

            try:
                if isinstance(value, (dict, list)):
                    value = json.dumps(value)

                if ttl:
                    result = self.client.setex(key, ttl, value)
                else:
                    result = self.client.set(key, value)

                span.set_attribute("redis.result", "success")
                return bool(result)

            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis set failed for key {key}: {str(e)}")
                return False

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from Redis, decoding JSON when possible.

        Args:
            key: Redis key

        Returns:
            Value if found, None otherwise
        """
        if not self.client:
            logger.warning("Redis client not available, skipping get operation")
            return None

        with tracer.start_as_current_span("redis.get") as span:
            span.set_attribute("redis.key", key)

            try:
                value = self.client.get(key)

                if value is None:
                    span.set_attribute("redis.result", "not_found")
                    return None

                try:
                    return json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    return value

            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis get failed for key {key}: {str(e)}")
                return None

    def delete(self, key: str) -> bool:
        """Delete a key from Redis."""
        if not self.client:
            logger.warning("Redis client not available, skipping delete operation")
            return False

        try:
            return bool(self.client.delete(key))
        except Exception as e:
            logger.error(f"Redis delete failed for key {key}: {str(e)}")
            return False

    def exists(self, key: str) -> bool:
        """Check if a key exists in Redis."""
        if not self.client:
            return False

        try:
            return bool(self.client.exists(key))
        except Exception as e:
            logger.error(f"Redis exists check failed for key {key}: {str(e)}")
            return False

    def increment_window(self, key: str, window_seconds: int) -> Optional[int]:
        """
        Increment a fixed-window counter, setting its expiry on first use.

        Returns:
            The new count, or None when Redis is unavailable
        """
        if not self.client:
            return None

        with tracer.start_as_current_span("redis.increment_window") as span:
            span.set_attribute("redis.key", key)
            try:
                pipe = self.client.pipeline()
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                count, _ = pipe.execute()
                return int(count)
            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis increment failed for key {key}: {str(e)}")
                return None

    # JWT Token Blocklist Methods

    def add_to_blocklist(self, jti: str, exp: int) -> bool:
        """
        Add a JWT token to the blocklist until it would have expired.

        Args:
            jti: JWT ID (unique token identifier)
            exp: Token expiration timestamp

        Returns:
            True if successful, False otherwise
        """
        ttl = max(0, exp - int(time.time()))
        if ttl <= 0:
            return True  # Token already expired

        return self.set(f"blocklist:jwt:{jti}", "blocked", ttl)

    def is_token_blocked(self, jti: str) -> bool:
        """Check if a JWT token is in the blocklist."""
        return self.exists(f"blocklist:jwt:{jti}")

    def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report its status."""
        if not self.client:
            return {"status": "unhealthy", "error": "Redis client not initialized"}
        try:
            start = time.time()
            self.client.ping()
            return {
                "status": "healthy",
                "response_time_ms": round((time.time() - start) * 1000, 2),
            }
        except Exception as e:
            logger.error(f"Redis health check failed: {str(e)}")
            return {"status": "unhealthy", "error": str(e)}


def create_redis_service() -> RedisService:
    """
    Factory function to create Redis service instance.

    Returns:
        RedisService instance
    """
    return RedisService()
