"""Turn an ordered bar history into an IndicatorVector for one symbol."""

import logging
from typing import Optional

import numpy as np
import polars as pl
from pydantic import ValidationError

from screener.common.exceptions import DataIntegrityError
from screener.common.time import now_ms as current_ms
from screener.indicators.averages import ema, sma
from screener.indicators.momentum import macd, rsi
from screener.market.models import IndicatorVector, MACDValues

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ("open", "high", "low", "close", "volume")


def validate_bars(symbol: str, bars: pl.DataFrame) -> None:
    """Raise DataIntegrityError unless bars are non-empty, chronological and finite."""
    if bars.is_empty():
        raise DataIntegrityError(symbol, "no bars")

    missing = [col for col in ("timestamp", *PRICE_COLUMNS) if col not in bars.columns]
    if missing:
        raise DataIntegrityError(symbol, f"missing columns {missing}")

    if bars["timestamp"].null_count():
        raise DataIntegrityError(symbol, "null timestamp")

    steps = bars["timestamp"].diff().drop_nulls()
    if len(steps) and steps.min() <= 0:  # type: ignore[operator]
        raise DataIntegrityError(symbol, "timestamps not strictly increasing")

    for col in PRICE_COLUMNS:
        values = bars[col].cast(pl.Float64).to_numpy()
        if not np.isfinite(values).all():
            raise DataIntegrityError(symbol, f"non-finite {col}")


def change_percent(close: float, previous_close: Optional[float]) -> float:
    if not previous_close:
        return 0.0
    return (close - previous_close) / previous_close * 100


def compute_indicators(
    symbol: str,
    bars: pl.DataFrame,
    previous_close: Optional[float] = None,
    previous: Optional[IndicatorVector] = None,
    now_ms: Optional[int] = None,
) -> IndicatorVector:
    """Compute the indicator vector for `symbol` from its full bar history.

    Indicators without enough history are left as None. Out-of-order or non-finite bars
    raise DataIntegrityError and nothing is produced, so callers keep the previous vector.

    Args:
        symbol: Ticker symbol.
        bars: Chronological bar history with timestamp/open/high/low/close/volume columns.
        previous_close: Prior session close used for changePercent.
        previous: Previous vector for this symbol, keeps updatedAt monotonic.
        now_ms: Computation time in epoch milliseconds (default: wall clock).
    """
    validate_bars(symbol, bars)

    closes = bars["close"].cast(pl.Float64).to_numpy()
    close = float(closes[-1])
    volume = float(bars["volume"][-1])

    updated_at = now_ms if now_ms is not None else current_ms()
    if previous is not None:
        updated_at = max(updated_at, previous.updatedAt + 1)

    macd_result = macd(closes)
    try:
        return IndicatorVector(
            symbol=symbol,
            price=close,
            volume=volume,
            changePercent=change_percent(close, previous_close),
            rsi14=rsi(closes),
            sma20=sma(closes, 20),
            sma50=sma(closes, 50),
            sma200=sma(closes, 200),
            ema12=ema(closes, 12),
            ema26=ema(closes, 26),
            macd=MACDValues(**macd_result._asdict()) if macd_result else None,
            updatedAt=updated_at,
        )
    except ValidationError as e:
        raise DataIntegrityError(
            symbol, f"derived values rejected: {e.error_count()} errors"
        ) from e
