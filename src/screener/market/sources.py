import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import polars as pl
import redis.asyncio as redis  # type: ignore

from screener.common.exceptions import UpstreamFetchError
from screener.market.models import BAR_SCHEMA, PriceBar, bars_frame

logger = logging.getLogger(__name__)

ROW_LIMIT = 5_000

BARS_KEY_FMT = "bars:{symbol}"
PREV_CLOSE_KEY_FMT = "prevclose:{symbol}"
TRACKED_SYMBOLS_KEY = "symbols:tracked"


@dataclass(frozen=True)
class BarHistory:
    symbol: str
    bars: pl.DataFrame
    previous_close: Optional[float] = None


class BarSource(ABC):
    """Supplier of per-symbol bar history and the prior session close."""

    @abstractmethod
    async def list_symbols(self) -> List[str]:
        """Symbols with history available"""
        pass

    @abstractmethod
    async def fetch(self, symbol: str) -> BarHistory:
        """Fetch the full bar history for a symbol; raises UpstreamFetchError"""
        pass

    async def initialize(self) -> None:
        """Initialize the source"""
        pass

    async def close(self) -> None:
        pass


class InMemoryBarSource(BarSource):
    """Per-symbol polars frames fed by tests, loaders or the streaming ingester."""

    def __init__(self, max_rows: int = ROW_LIMIT) -> None:
        self.max_rows = max_rows
        self.frames: Dict[str, pl.DataFrame] = {}
        self.previous_closes: Dict[str, float] = {}

    def set_history(
        self, symbol: str, bars: Iterable[PriceBar], previous_close: Optional[float] = None
    ) -> None:
        self.frames[symbol] = bars_frame(bars).tail(self.max_rows)
        if previous_close is not None:
            self.previous_closes[symbol] = previous_close

    def set_previous_close(self, symbol: str, previous_close: float) -> None:
        self.previous_closes[symbol] = previous_close

    def append(self, symbol: str, bars: Iterable[PriceBar]) -> int:
        """Append bars in arrival order, keeping stored history strictly increasing.

        A bar is dropped unless its timestamp is later than every bar already stored and
        every earlier bar in the same batch; duplicates and late bars never reach history.

        Returns the number of bars added.
        """
        incoming = bars_frame(bars)
        running_max = pl.col("timestamp").cum_max().shift(1)
        incoming = incoming.filter(
            running_max.is_null() | (pl.col("timestamp") > running_max)
        )

        existing = self.frames.get(symbol)
        if existing is not None and not existing.is_empty():
            head = existing["timestamp"].max()
            incoming = incoming.filter(pl.col("timestamp") > head)
            frame = existing.vstack(incoming)
        else:
            frame = incoming

        if len(frame) > 2 * self.max_rows:
            frame = frame.tail(self.max_rows)

        self.frames[symbol] = frame
        return len(incoming)

    def remove(self, symbol: str) -> None:
        self.frames.pop(symbol, None)
        self.previous_closes.pop(symbol, None)

    async def list_symbols(self) -> List[str]:
        return [symbol for symbol, frame in self.frames.items() if not frame.is_empty()]

    async def fetch(self, symbol: str) -> BarHistory:
        frame = self.frames.get(symbol)
        if frame is None:
            raise UpstreamFetchError(symbol, KeyError(symbol))
        return BarHistory(
            symbol=symbol, bars=frame, previous_close=self.previous_closes.get(symbol)
        )


class RedisBarSource(BarSource):
    """Redis-backed bar source.

    Bars are JSON-encoded PriceBar objects in the list `bars:{symbol}`, the prior close is
    the string `prevclose:{symbol}` and tracked symbols are members of `symbols:tracked`.
    """

    def __init__(self, redis_url: str = "redis://redis:6379/0", max_rows: int = ROW_LIMIT):
        self.max_rows = max_rows
        self.redis = redis.from_url(redis_url)

    async def initialize(self) -> None:
        try:
            response = await self.redis.ping()
            logger.info("Redis ping response: %s", response)
        except Exception as e:
            logger.error("Error initializing Redis connection: %s", e)
            raise ConnectionError(f"Failed to establish Redis connection: {e}")

    async def close(self) -> None:
        await self.redis.aclose()

    async def list_symbols(self) -> List[str]:
        members = await self.redis.smembers(TRACKED_SYMBOLS_KEY)
        return sorted(m.decode("utf-8") if isinstance(m, bytes) else m for m in members)

    async def fetch(self, symbol: str) -> BarHistory:
        try:
            key = BARS_KEY_FMT.format(symbol=symbol)
            raw_bars = await self.redis.lrange(key, -self.max_rows, -1)
            raw_close = await self.redis.get(PREV_CLOSE_KEY_FMT.format(symbol=symbol))
        except Exception as e:
            raise UpstreamFetchError(symbol, e) from e

        try:
            bars = [PriceBar.model_validate(json.loads(raw)) for raw in raw_bars]
            previous_close = float(raw_close) if raw_close is not None else None
        except (ValueError, TypeError) as e:
            raise UpstreamFetchError(symbol, e) from e

        frame = bars_frame(bars) if bars else pl.DataFrame(schema=BAR_SCHEMA)
        return BarHistory(symbol=symbol, bars=frame, previous_close=previous_close)
