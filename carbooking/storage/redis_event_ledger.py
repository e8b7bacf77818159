"""Redis-backed ledger of processed payment events."""

import redis.asyncio as redis

from carbooking.logging import get_logger

logger = get_logger(__name__)


class RedisEventLedger:
    """Claims payment event ids with SET NX so each event is applied once."""

    def __init__(self, redis_url: str, ttl_seconds: int = 7 * 24 * 3600):
        """Initialize Redis event ledger."""
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        self._client = redis.from_url(self.redis_url, encoding="utf-8")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _key(self, event_id: str) -> str:
        return f"carbooking:payment_event:{event_id}"

    async def claim(self, event_id: str) -> bool:
        """Return True if this caller is the first to see the event."""
        if not self._client:
            raise RuntimeError("Redis client not connected")

        claimed = await self._client.set(self._key(event_id), "1", ex=self.ttl_seconds, nx=True)
        if not claimed:
            logger.info("payment_event_already_claimed", event_id=event_id)
        return bool(claimed)

    async def release(self, event_id: str) -> None:
        """Forget a claim so a redelivered event is processed again."""
        if not self._client:
            raise RuntimeError("Redis client not connected")

        await self._client.delete(self._key(event_id))
