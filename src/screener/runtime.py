import asyncio
import logging
import time
from typing import List, Optional

from screener.config.settings import Settings
from screener.market.ingest import BarIngester
from screener.market.sources import BarSource, InMemoryBarSource, RedisBarSource
from screener.market.store import IndicatorStore
from screener.market.worker import RefreshWorker
from screener.processors.redis import RedisMirrorProcessor
from screener.realtime.coordinator import BroadcastCoordinator
from screener.screening.registry import FilterRegistry

logger = logging.getLogger(__name__)


def build_source(settings: Settings) -> BarSource:
    if settings.bar_source == "redis":
        return RedisBarSource(redis_url=settings.redis_url)
    return InMemoryBarSource()


class ScreenerRuntime:
    """Owns the store, refresh worker, filter registry and broadcast coordinator."""

    def __init__(self, settings: Settings, source: Optional[BarSource] = None) -> None:
        self.settings = settings
        self.source = source or build_source(settings)

        self.store = IndicatorStore(
            self.source,
            batch_size=settings.refresh_batch_size,
            timeout_seconds=settings.refresh_timeout_seconds,
            max_limit=settings.max_bulk_limit,
        )
        self.registry = FilterRegistry()
        self.worker = RefreshWorker(
            self.store,
            interval_seconds=settings.refresh_interval_seconds,
            job_history=settings.refresh_job_history,
        )
        self.coordinator = BroadcastCoordinator(
            self.store,
            self.registry,
            page_size=settings.default_page_size,
            evaluation_timeout=settings.evaluation_timeout_seconds,
            send_timeout=settings.send_timeout_seconds,
        )
        self.worker.add_listener(self.coordinator.inbox)

        self.mirror: Optional[RedisMirrorProcessor] = None
        self.ingester: Optional[BarIngester] = None
        self.started_at: Optional[float] = None
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        if self.started_at is not None:
            return
        await self.source.initialize()

        if self.settings.mirror_to_redis:
            self.mirror = RedisMirrorProcessor(
                redis_url=self.settings.redis_url, ttl_seconds=self.settings.indicator_ttl_seconds
            )
            self.store.add_processor(self.mirror)
            logger.info("Mirroring vectors to Redis at %s", self.settings.redis_url)

        self.worker.start()
        self._tasks.append(asyncio.create_task(self.coordinator.run(), name="coordinator"))

        if self.settings.stream_bars:
            if isinstance(self.source, InMemoryBarSource):
                self.ingester = BarIngester(
                    self.source, self.worker, redis_url=self.settings.redis_url
                )
                self.ingester.start()
            else:
                logger.warning("stream_bars needs the in-memory bar source, ignoring")

        self.worker.trigger()
        self.started_at = time.time()
        logger.info("Screener runtime started (bar source: %s)", type(self.source).__name__)

    async def stop(self) -> None:
        if self.ingester is not None:
            await self.ingester.stop()
            self.ingester = None
        await self.worker.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.mirror is not None:
            self.store.remove_processor(self.mirror)
            await self.mirror.close()
            self.mirror = None
        await self.source.close()
        self.started_at = None
        logger.info("Screener runtime stopped")

    def health(self) -> dict:
        last = self.store.last_summary
        return {
            "status": "healthy" if self.started_at is not None else "stopped",
            "uptimeSeconds": round(time.time() - self.started_at, 1) if self.started_at else 0,
            "trackedSymbols": len(self.store.snapshot()),
            "storeVersion": self.store.version,
            "refreshing": self.worker.is_refreshing,
            "lastRefresh": last.to_dict() if last else None,
            "failureCounts": dict(self.store.failure_counts),
            "realtime": self.coordinator.stats(),
        }
