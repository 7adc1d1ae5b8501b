import logging
from typing import Iterable, Optional

import polars as pl
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

BAR_SCHEMA = {
    "timestamp": pl.Int64,
    "open": pl.Float64,
    "high": pl.Float64,
    "low": pl.Float64,
    "close": pl.Float64,
    "volume": pl.Float64,
    "vwap": pl.Float64,
    "tradeCount": pl.Int64,
}


class PriceBar(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        extra="forbid",
    )

    timestamp: int = Field(description="Bar open time, epoch milliseconds")
    open: float = Field(description="Opening price")
    high: float = Field(description="High price")
    low: float = Field(description="Low price")
    close: float = Field(description="Closing price")
    volume: float = Field(description="Traded volume", ge=0)
    vwap: Optional[float] = Field(default=None, description="Volume weighted average price")
    tradeCount: Optional[int] = Field(default=None, description="Number of trades", ge=0)


def bars_frame(bars: Iterable[PriceBar]) -> pl.DataFrame:
    """Build a bar history frame in the given order."""
    rows = [bar.model_dump() for bar in bars]
    if not rows:
        return pl.DataFrame(schema=BAR_SCHEMA)
    return pl.DataFrame(rows, schema=BAR_SCHEMA)


class MACDValues(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    value: float = Field(description="MACD value (EMA12 - EMA26)")
    signal: float = Field(description="Signal line (EMA9 of value)")
    histogram: float = Field(description="Histogram (value - signal)")


class IndicatorVector(BaseModel):
    """Latest price, volume and technical indicators for one symbol.

    Optional indicators stay None until enough history exists; a present field always
    holds a finite number.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        allow_inf_nan=False,
        str_strip_whitespace=True,
    )

    symbol: str = Field(description="Ticker symbol", min_length=1)
    price: float = Field(description="Last close")
    volume: float = Field(description="Volume of the last bar", ge=0)
    changePercent: float = Field(description="Change versus the prior session close, percent")
    rsi14: Optional[float] = Field(default=None, ge=0, le=100)
    sma20: Optional[float] = None
    sma50: Optional[float] = None
    sma200: Optional[float] = None
    ema12: Optional[float] = None
    ema26: Optional[float] = None
    macd: Optional[MACDValues] = None
    updatedAt: int = Field(description="Logical timestamp of the last computation, epoch ms")

    def same_values(self, other: "IndicatorVector") -> bool:
        """Compare every field except updatedAt."""
        return self.model_dump(exclude={"updatedAt"}) == other.model_dump(exclude={"updatedAt"})
