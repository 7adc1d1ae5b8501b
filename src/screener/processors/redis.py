import json
import logging
from typing import List

import redis.asyncio as aioredis  # type: ignore

from screener.market.models import IndicatorVector

logger = logging.getLogger(__name__)

INDICATOR_KEY_FMT = "indicators:{symbol}"
INDICATOR_KEY_PATTERN = "indicators:*"
UPDATED_CHANNEL = "indicators:updated"
DEFAULT_TTL_SECONDS = 300


class RedisMirrorProcessor:
    """Mirror committed vectors to Redis keys and announce the changed symbols."""

    name = "redis_mirror"

    def __init__(
        self, redis_url: str = "redis://redis:6379/0", ttl_seconds: int = DEFAULT_TTL_SECONDS
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.redis = aioredis.from_url(redis_url)

    async def process_vectors(self, vectors: List[IndicatorVector]) -> None:
        if not vectors:
            return
        async with self.redis.pipeline(transaction=False) as pipe:
            for vector in vectors:
                pipe.set(
                    INDICATOR_KEY_FMT.format(symbol=vector.symbol),
                    vector.model_dump_json(),
                    ex=self.ttl_seconds,
                )
            pipe.publish(UPDATED_CHANNEL, json.dumps([v.symbol for v in vectors]))
            await pipe.execute()
        logger.debug("Mirrored %d vectors to Redis", len(vectors))

    async def close(self) -> None:
        await self.redis.aclose()


"""
Helpful CLI commands:

# Watch refresh announcements
redis-cli SUBSCRIBE "indicators:updated"

# Read one mirrored vector
redis-cli get "indicators:AAPL"

# Time left before a mirrored vector expires
redis-cli ttl "indicators:AAPL"
"""
