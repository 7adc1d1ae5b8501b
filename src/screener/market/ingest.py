import asyncio
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from redis import asyncio as aioredis  # type: ignore

from screener.market.models import PriceBar
from screener.market.sources import InMemoryBarSource
from screener.market.worker import RefreshWorker

logger = logging.getLogger(__name__)

BAR_CHANNEL_PREFIX = "market:PriceBar:"
BAR_PATTERN = f"{BAR_CHANNEL_PREFIX}*"


class BarIngester:
    """Append streamed bars to the in-memory history and queue a refresh per symbol."""

    def __init__(
        self,
        source: InMemoryBarSource,
        worker: RefreshWorker,
        redis_url: str = "redis://redis:6379/0",
    ) -> None:
        self.source = source
        self.worker = worker
        self.redis = aioredis.from_url(redis_url, decode_responses=True)
        self.received = 0
        self.rejected = 0
        self._task: Optional[asyncio.Task] = None

    def handle_message(self, message: Dict[str, Any]) -> Optional[str]:
        """Ingest one pub/sub message; returns the symbol when a bar was appended."""
        if message.get("type") not in {"pmessage", "message"}:
            return None
        channel = message.get("channel") or ""
        data = message.get("data")
        if not data or not channel.startswith(BAR_CHANNEL_PREFIX):
            return None

        symbol = channel[len(BAR_CHANNEL_PREFIX) :]
        try:
            payload = json.loads(data)
            bars = payload if isinstance(payload, list) else [payload]
            parsed = [PriceBar.model_validate(bar) for bar in bars]
        except (ValueError, ValidationError) as e:
            self.rejected += 1
            logger.warning("Rejected bar message on %s: %s", channel, e)
            return None

        self.received += len(parsed)
        added = self.source.append(symbol, parsed)
        if added < len(parsed):
            self.rejected += len(parsed) - added
            logger.debug(
                "Dropped %d late or duplicate bars for %s", len(parsed) - added, symbol
            )
        if added == 0:
            return None
        self.worker.trigger([symbol])
        return symbol

    async def run(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(BAR_PATTERN)
        logger.info("BarIngester subscribed to %s", BAR_PATTERN)
        try:
            async for message in pubsub.listen():
                self.handle_message(message)
        except asyncio.CancelledError:
            logger.info(
                "BarIngester stopped - received: %d, rejected: %d", self.received, self.rejected
            )
            raise
        finally:
            await pubsub.aclose()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="bar-ingester")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.redis.aclose()
