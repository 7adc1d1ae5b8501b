"""Tests for BarIngester message handling."""

import json
from unittest.mock import MagicMock, patch

import pytest

from screener.market.ingest import BarIngester
from screener.market.models import PriceBar
from screener.market.sources import InMemoryBarSource


def make_bar_json(timestamp: int, close: float = 10.0) -> str:
    return PriceBar(
        timestamp=timestamp, open=close, high=close, low=close, close=close, volume=500
    ).model_dump_json()


@pytest.fixture
def ingester() -> BarIngester:
    with patch("screener.market.ingest.aioredis.from_url"):
        return BarIngester(InMemoryBarSource(), MagicMock())


def message(symbol: str, data: str, kind: str = "pmessage") -> dict:
    return {
        "type": kind,
        "pattern": "market:PriceBar:*",
        "channel": f"market:PriceBar:{symbol}",
        "data": data,
    }


def test_bar_is_appended_and_refresh_queued(ingester: BarIngester) -> None:
    assert ingester.handle_message(message("AAPL", make_bar_json(1))) == "AAPL"

    assert ingester.source.frames["AAPL"].height == 1
    ingester.worker.trigger.assert_called_once_with(["AAPL"])


def test_bar_list_payload(ingester: BarIngester) -> None:
    payload = json.dumps([json.loads(make_bar_json(1)), json.loads(make_bar_json(2))])
    ingester.handle_message(message("MSFT", payload))

    assert ingester.source.frames["MSFT"]["timestamp"].to_list() == [1, 2]
    assert ingester.received == 2


def test_duplicate_bar_does_not_queue_refresh(ingester: BarIngester) -> None:
    ingester.handle_message(message("AAPL", make_bar_json(1)))
    ingester.worker.trigger.reset_mock()

    assert ingester.handle_message(message("AAPL", make_bar_json(1, 99.0))) is None
    ingester.worker.trigger.assert_not_called()


def test_malformed_bar_is_rejected(ingester: BarIngester) -> None:
    assert ingester.handle_message(message("AAPL", '{"timestamp": "soon"}')) is None
    assert ingester.handle_message(message("AAPL", "not json")) is None

    assert ingester.rejected == 2
    assert "AAPL" not in ingester.source.frames
    ingester.worker.trigger.assert_not_called()


def test_subscribe_confirmations_are_ignored(ingester: BarIngester) -> None:
    confirmation = {"type": "psubscribe", "channel": "market:PriceBar:*", "data": 1}
    assert ingester.handle_message(confirmation) is None
    assert ingester.handle_message(message("AAPL", make_bar_json(1), kind="subscribe")) is None


def test_foreign_channel_is_ignored(ingester: BarIngester) -> None:
    msg = {"type": "pmessage", "channel": "market:QuoteEvent:AAPL", "data": make_bar_json(1)}
    assert ingester.handle_message(msg) is None


def test_late_bar_is_rejected_and_history_stays_ordered(ingester: BarIngester) -> None:
    ingester.handle_message(message("AAPL", make_bar_json(5)))
    ingester.worker.trigger.reset_mock()

    assert ingester.handle_message(message("AAPL", make_bar_json(3))) is None
    assert ingester.rejected == 1
    ingester.worker.trigger.assert_not_called()

    assert ingester.handle_message(message("AAPL", make_bar_json(6))) == "AAPL"
    assert ingester.source.frames["AAPL"]["timestamp"].to_list() == [5, 6]


def test_partially_late_batch_counts_dropped_bars(ingester: BarIngester) -> None:
    ingester.handle_message(message("MSFT", make_bar_json(10)))
    payload = json.dumps([json.loads(make_bar_json(t)) for t in (8, 11, 9, 12)])

    assert ingester.handle_message(message("MSFT", payload)) == "MSFT"

    assert ingester.rejected == 2
    assert ingester.source.frames["MSFT"]["timestamp"].to_list() == [10, 11, 12]
