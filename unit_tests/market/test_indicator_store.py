"""Tests for IndicatorStore refresh, reads and snapshot semantics."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from screener.common.exceptions import UpstreamFetchError
from screener.market.models import IndicatorVector, PriceBar
from screener.market.sources import BarHistory, InMemoryBarSource
from screener.market.store import IndicatorStore

START_MS = 1_767_225_600_000
DAY_MS = 86_400_000


def make_bars(closes: list[float], volume: float = 1_000_000.0) -> list[PriceBar]:
    return [
        PriceBar(
            timestamp=START_MS + i * DAY_MS,
            open=close,
            high=close,
            low=close,
            close=close,
            volume=volume,
        )
        for i, close in enumerate(closes)
    ]


def make_vector(
    symbol: str, price: float = 100.0, volume: float = 1_000_000.0
) -> IndicatorVector:
    return IndicatorVector(
        symbol=symbol, price=price, volume=volume, changePercent=0.0, updatedAt=1
    )


def make_source() -> InMemoryBarSource:
    source = InMemoryBarSource()
    source.set_history("AAPL", make_bars([10.0, 11.0, 12.0]), previous_close=11.0)
    source.set_history("MSFT", make_bars([20.0, 21.0]), previous_close=20.0)
    source.set_history("NVDA", make_bars([30.0, 29.0]), previous_close=30.0)
    return source


class FailingSource(InMemoryBarSource):
    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    async def fetch(self, symbol: str) -> BarHistory:
        if symbol in self.failing:
            raise UpstreamFetchError(symbol, ConnectionError("upstream down"))
        return await super().fetch(symbol)


class SlowSource(InMemoryBarSource):
    async def fetch(self, symbol: str) -> BarHistory:
        await asyncio.sleep(1)
        return await super().fetch(symbol)


@pytest.mark.asyncio
async def test_refresh_all_populates_store() -> None:
    store = IndicatorStore(make_source())
    summary = await store.refresh_all()

    assert summary.processed == 3
    assert summary.failed == 0
    assert sorted(summary.changed) == ["AAPL", "MSFT", "NVDA"]
    assert store.get("AAPL") is not None
    assert store.get("AAPL").price == 12.0
    assert store.get("MSFT").changePercent == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_get_unknown_symbol_returns_none() -> None:
    store = IndicatorStore(make_source())
    await store.refresh_all()
    assert store.get("TSLA") is None


@pytest.mark.asyncio
async def test_untouched_symbols_are_identical_between_cycles() -> None:
    source = make_source()
    store = IndicatorStore(source)
    await store.refresh_all()
    msft_before = store.get("MSFT")
    nvda_before = store.get("NVDA")

    source.append("AAPL", make_bars([10.0, 11.0, 12.0, 13.0])[3:])
    summary = await store.refresh(["AAPL"])

    assert summary.changed == ["AAPL"]
    assert store.get("AAPL").price == 13.0
    assert store.get("MSFT") is msft_before
    assert store.get("NVDA") is nvda_before


@pytest.mark.asyncio
async def test_unchanged_data_keeps_previous_vector() -> None:
    store = IndicatorStore(make_source())
    await store.refresh_all()
    before = store.get("AAPL")
    version = store.version

    summary = await store.refresh_all()

    assert summary.processed == 3
    assert summary.changed == []
    assert store.get("AAPL") is before
    assert store.version == version


@pytest.mark.asyncio
async def test_partial_failure_keeps_stale_vector_and_counts() -> None:
    source = FailingSource(failing=set())
    source.set_history("AAPL", make_bars([10.0, 11.0]))
    source.set_history("MSFT", make_bars([20.0, 21.0]))
    store = IndicatorStore(source)
    await store.refresh_all()
    stale = store.get("AAPL")

    source.failing.add("AAPL")
    source.set_history("MSFT", make_bars([20.0, 21.0, 25.0]))
    summary = await store.refresh_all()
    await store.refresh_all()

    assert summary.processed == 1
    assert summary.failed == 1
    assert summary.failed_symbols == ["AAPL"]
    assert store.get("AAPL") is stale
    assert store.get("MSFT").price == 25.0
    assert store.failure_counts["AAPL"] == 2


@pytest.mark.asyncio
async def test_failure_count_resets_after_success() -> None:
    source = FailingSource(failing={"AAPL"})
    source.set_history("AAPL", make_bars([10.0, 11.0]))
    store = IndicatorStore(source)
    await store.refresh_all()
    assert store.failure_counts["AAPL"] == 1

    source.failing.clear()
    await store.refresh_all()
    assert "AAPL" not in store.failure_counts


@pytest.mark.asyncio
async def test_bad_bars_freeze_symbol() -> None:
    source = make_source()
    store = IndicatorStore(source)
    await store.refresh_all()
    frozen = store.get("NVDA")

    source.set_history("NVDA", list(reversed(make_bars([30.0, 31.0, 32.0]))))
    summary = await store.refresh(["NVDA"])

    assert summary.failed == 1
    assert store.get("NVDA") is frozen


@pytest.mark.asyncio
async def test_refresh_timeout_reports_partial_cycle() -> None:
    source = SlowSource()
    source.set_history("AAPL", make_bars([10.0]))
    store = IndicatorStore(source, timeout_seconds=0.05)

    summary = await store.refresh_all()

    assert summary.timed_out is True
    assert summary.processed == 0
    assert store.get("AAPL") is None
    assert store.metrics.timeouts == 1


@pytest.mark.asyncio
async def test_batches_commit_independently() -> None:
    source = InMemoryBarSource()
    for i in range(5):
        source.set_history(f"S{i}", make_bars([10.0 + i]))
    store = IndicatorStore(source, batch_size=2)

    summary = await store.refresh_all()

    assert summary.processed == 5
    assert store.version == 3
    assert store.snapshot().symbols == ["S0", "S1", "S2", "S3", "S4"]


@pytest.mark.asyncio
async def test_old_snapshot_is_not_mutated_by_refresh() -> None:
    source = make_source()
    store = IndicatorStore(source)
    await store.refresh_all()
    snapshot = store.snapshot()
    old_aapl = snapshot.get("AAPL")

    source.set_history("AAPL", make_bars([50.0, 60.0]))
    await store.refresh(["AAPL"])

    assert snapshot.get("AAPL") is old_aapl
    assert store.get("AAPL").price == 60.0
    assert store.snapshot().version == snapshot.version + 1


def test_get_all_clamps_to_ceiling() -> None:
    store = IndicatorStore(InMemoryBarSource())
    store.load(make_vector(f"SYM{i}") for i in range(1200))

    assert len(store.get_all(5000)) == 1000
    assert len(store.get_all()) == 100
    assert len(store.get_all(5)) == 5
    assert store.get_all(0) == []


def test_get_many_skips_untracked() -> None:
    store = IndicatorStore(InMemoryBarSource())
    store.load([make_vector("AAPL"), make_vector("MSFT")])

    found = store.get_many(["MSFT", "NOPE", "AAPL"])
    assert [v.symbol for v in found] == ["MSFT", "AAPL"]


@pytest.mark.asyncio
async def test_processors_receive_committed_vectors() -> None:
    store = IndicatorStore(make_source())
    processor = AsyncMock()
    processor.name = "spy"
    store.add_processor(processor)

    await store.refresh_all()

    processor.process_vectors.assert_awaited_once()
    committed = processor.process_vectors.await_args.args[0]
    assert sorted(v.symbol for v in committed) == ["AAPL", "MSFT", "NVDA"]


@pytest.mark.asyncio
async def test_processor_failure_does_not_fail_refresh() -> None:
    store = IndicatorStore(make_source())
    processor = AsyncMock()
    processor.name = "broken"
    processor.process_vectors.side_effect = RuntimeError("redis down")
    store.add_processor(processor)

    summary = await store.refresh_all()

    assert summary.processed == 3
    assert store.get("AAPL") is not None


@pytest.mark.asyncio
async def test_remove_processor() -> None:
    store = IndicatorStore(make_source())
    processor = AsyncMock()
    processor.name = "spy"
    store.add_processor(processor)
    store.remove_processor(processor)

    await store.refresh_all()

    processor.process_vectors.assert_not_awaited()


def make_bar_at(timestamp: int, close: float) -> PriceBar:
    return PriceBar(
        timestamp=timestamp, open=close, high=close, low=close, close=close, volume=100
    )


@pytest.mark.asyncio
async def test_late_streamed_bar_does_not_freeze_symbol() -> None:
    source = InMemoryBarSource()
    source.append("AAPL", [make_bar_at(t, 10.0 + t) for t in range(1, 6)])
    store = IndicatorStore(source)
    await store.refresh_all()

    source.append("AAPL", [make_bar_at(0, 1.0)])
    source.append("AAPL", [make_bar_at(100, 50.0)])
    summary = await store.refresh_all()

    assert summary.failed == 0
    assert summary.changed == ["AAPL"]
    assert store.get("AAPL").price == 50.0
