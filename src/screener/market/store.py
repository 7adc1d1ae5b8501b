import asyncio
import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from screener.common.exceptions import DataIntegrityError, UpstreamFetchError
from screener.indicators.pipeline import compute_indicators
from screener.market.models import IndicatorVector
from screener.market.sources import BarSource
from screener.processors.base import VectorProcessor

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of every vector at one store version, in tracking order."""

    version: int
    vectors: Mapping[str, IndicatorVector]

    def get(self, symbol: str) -> Optional[IndicatorVector]:
        return self.vectors.get(symbol)

    def __iter__(self) -> Iterator[IndicatorVector]:
        return iter(self.vectors.values())

    def __len__(self) -> int:
        return len(self.vectors)

    @property
    def symbols(self) -> List[str]:
        return list(self.vectors)


EMPTY_SNAPSHOT = StoreSnapshot(version=0, vectors=MappingProxyType({}))


@dataclass
class RefreshSummary:
    processed: int = 0
    failed: int = 0
    failed_symbols: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    timed_out: bool = False
    version: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RefreshMetrics:
    cycles: int = 0
    processed: int = 0
    failed: int = 0
    timeouts: int = 0
    last_cycle_time: float = 0
    last_duration: float = 0

    def update(self, summary: RefreshSummary) -> None:
        self.cycles += 1
        self.processed += summary.processed
        self.failed += summary.failed
        self.timeouts += int(summary.timed_out)
        self.last_cycle_time = time.time()
        self.last_duration = summary.duration_seconds


class IndicatorStore:
    """Process-wide cache of the latest IndicatorVector per symbol.

    Readers take the current snapshot reference and never lock. Refreshes are serialized,
    and each committed batch swaps in a new immutable snapshot, so a reader sees a symbol's
    old vector or its new one and nothing in between.
    """

    def __init__(
        self,
        source: BarSource,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout_seconds: Optional[float] = 30.0,
        max_limit: int = MAX_LIMIT,
    ) -> None:
        self.source = source
        self.batch_size = batch_size
        self.timeout_seconds = timeout_seconds
        self.max_limit = max_limit

        self._snapshot = EMPTY_SNAPSHOT
        self._write_lock = asyncio.Lock()

        self.failure_counts: Counter[str] = Counter()
        self.metrics = RefreshMetrics()
        self.last_summary: Optional[RefreshSummary] = None
        self.processors: Dict[str, VectorProcessor] = {}

    def add_processor(self, processor: VectorProcessor) -> None:
        """Add a post-commit vector processor"""
        self.processors.update({processor.name: processor})

    def remove_processor(self, processor: VectorProcessor) -> None:
        """Remove a vector processor"""
        if processor.name in self.processors:
            del self.processors[processor.name]

    @property
    def version(self) -> int:
        return self._snapshot.version

    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    def get(self, symbol: str) -> Optional[IndicatorVector]:
        return self._snapshot.get(symbol)

    def get_many(self, symbols: Iterable[str]) -> List[IndicatorVector]:
        """Vectors for the given symbols; untracked symbols are skipped."""
        snapshot = self._snapshot
        return [v for v in (snapshot.get(s) for s in symbols) if v is not None]

    def get_all(self, limit: int = DEFAULT_LIMIT) -> List[IndicatorVector]:
        limit = max(0, min(limit, self.max_limit))
        snapshot = self._snapshot
        return list(snapshot)[:limit]

    async def refresh_all(self) -> RefreshSummary:
        return await self.refresh(None)

    async def refresh(self, symbols: Optional[Sequence[str]] = None) -> RefreshSummary:
        """Recompute and replace the vectors of `symbols` (all tracked symbols when None).

        A symbol that fails to fetch or holds bad bars keeps its previous vector and is
        reported in the summary; it never stops the rest of the cycle.
        """
        async with self._write_lock:
            started = time.monotonic()
            summary = RefreshSummary()

            if symbols is None:
                targets = await self.source.list_symbols()
            else:
                targets = list(dict.fromkeys(symbols))

            try:
                await asyncio.wait_for(self._run_batches(targets, summary), self.timeout_seconds)
            except asyncio.TimeoutError:
                summary.timed_out = True
                logger.warning(
                    "Refresh cycle timed out after %ss - %d/%d symbols processed",
                    self.timeout_seconds,
                    summary.processed + summary.failed,
                    len(targets),
                )

            summary.version = self.version
            summary.duration_seconds = time.monotonic() - started
            self.metrics.update(summary)
            self.last_summary = summary

        logger.info(
            "Refresh cycle complete - processed: %d, failed: %d, changed: %d, version: %d, "
            "duration: %.3fs",
            summary.processed,
            summary.failed,
            len(summary.changed),
            summary.version,
            summary.duration_seconds,
        )
        return summary

    async def _run_batches(self, targets: List[str], summary: RefreshSummary) -> None:
        for start in range(0, len(targets), self.batch_size):
            batch = targets[start : start + self.batch_size]
            previous = self._snapshot
            results = await asyncio.gather(
                *(self._compute(symbol, previous.get(symbol)) for symbol in batch),
                return_exceptions=True,
            )

            updates: List[IndicatorVector] = []
            for symbol, result in zip(batch, results):
                if isinstance(result, BaseException):
                    self._record_failure(symbol, result, summary)
                    continue
                summary.processed += 1
                self.failure_counts.pop(symbol, None)
                old = previous.get(symbol)
                if old is None or not old.same_values(result):
                    updates.append(result)

            if updates:
                await self._commit(updates)
                summary.changed.extend(v.symbol for v in updates)

    async def _compute(
        self, symbol: str, previous: Optional[IndicatorVector]
    ) -> IndicatorVector:
        history = await self.source.fetch(symbol)
        return compute_indicators(
            symbol, history.bars, previous_close=history.previous_close, previous=previous
        )

    def _record_failure(
        self, symbol: str, error: BaseException, summary: RefreshSummary
    ) -> None:
        summary.failed += 1
        summary.failed_symbols.append(symbol)
        self.failure_counts[symbol] += 1

        if isinstance(error, (UpstreamFetchError, DataIntegrityError)):
            logger.warning(
                "Keeping stale vector for %s (failure #%d): %s",
                symbol,
                self.failure_counts[symbol],
                error,
            )
        else:
            logger.error("Unexpected error refreshing %s", symbol, exc_info=error)

    async def _commit(self, updates: List[IndicatorVector]) -> None:
        current = self._snapshot
        vectors = dict(current.vectors)
        for vector in updates:
            vectors[vector.symbol] = vector
        self._snapshot = StoreSnapshot(
            version=current.version + 1, vectors=MappingProxyType(vectors)
        )

        for processor in list(self.processors.values()):
            try:
                await processor.process_vectors(updates)
            except Exception as e:
                logger.error(
                    "Processor %s failed on %d vectors: %s", processor.name, len(updates), e
                )

    def load(self, vectors: Iterable[IndicatorVector]) -> None:
        """Seed the store directly with precomputed vectors."""
        current = self._snapshot
        merged = dict(current.vectors)
        merged.update({v.symbol: v for v in vectors})
        self._snapshot = StoreSnapshot(
            version=current.version + 1, vectors=MappingProxyType(merged)
        )

