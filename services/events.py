"""
Real-time event publishing over Redis pub/sub.

Provides:
- Per-user task updates on ``tasks:<user_id>`` (forwarded to websockets)
- Application progress events on ``valet:progress``

Publishing here raises on failure; callers that treat events as
best-effort catch and log.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from config.settings import settings

logger = logging.getLogger(__name__)


class EventPublisher:
    """Async Redis publisher for real-time events."""

    # Channel names
    PREFIX_USER = "tasks:"
    CHANNEL_PROGRESS = "valet:progress"

    def __init__(self, redis_url: str | None = None, socket_timeout: float | None = None):
        """Initialize publisher."""
        self.redis_url = redis_url or settings.redis_url
        self.socket_timeout = socket_timeout or settings.redis_socket_timeout_seconds
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Create Redis connection."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
            await self._client.ping()
            logger.info("[Events] Connected to Redis")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("[Events] Disconnected from Redis")

    async def _get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore

    @property
    def client(self) -> redis.Redis | None:
        return self._client

    async def publish_to_user(self, user_id: str, event: dict[str, Any]) -> int:
        """Publish an event to one user's channel. Returns the subscriber count."""
        client = await self._get_client()
        return await client.publish(f"{self.PREFIX_USER}{user_id}", json.dumps(event, default=str))

    async def publish_progress(self, event: dict[str, Any]) -> int:
        client = await self._get_client()
        return await client.publish(self.CHANNEL_PROGRESS, json.dumps(event, default=str))

    async def health_check(self) -> dict:
        """Check Redis connection health."""
        try:
            client = await self._get_client()
            info = await client.info("server")
            return {
                "healthy": True,
                "redis_version": info.get("redis_version"),
            }
        except (redis.RedisError, OSError) as e:
            return {
                "healthy": False,
                "error": str(e),
            }
