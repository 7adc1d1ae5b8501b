from enum import Enum
from typing import Callable, Dict, Optional

from screener.market.models import IndicatorVector


class IndicatorField(str, Enum):
    """Numeric IndicatorVector fields a filter may test or sort by."""

    PRICE = "price"
    VOLUME = "volume"
    CHANGE_PERCENT = "changePercent"
    RSI14 = "rsi14"
    SMA20 = "sma20"
    SMA50 = "sma50"
    SMA200 = "sma200"
    EMA12 = "ema12"
    EMA26 = "ema26"
    MACD_VALUE = "macdValue"
    MACD_SIGNAL = "macdSignal"
    MACD_HISTOGRAM = "macdHistogram"


Accessor = Callable[[IndicatorVector], Optional[float]]

FIELD_ACCESSORS: Dict[IndicatorField, Accessor] = {
    IndicatorField.PRICE: lambda v: v.price,
    IndicatorField.VOLUME: lambda v: v.volume,
    IndicatorField.CHANGE_PERCENT: lambda v: v.changePercent,
    IndicatorField.RSI14: lambda v: v.rsi14,
    IndicatorField.SMA20: lambda v: v.sma20,
    IndicatorField.SMA50: lambda v: v.sma50,
    IndicatorField.SMA200: lambda v: v.sma200,
    IndicatorField.EMA12: lambda v: v.ema12,
    IndicatorField.EMA26: lambda v: v.ema26,
    IndicatorField.MACD_VALUE: lambda v: v.macd.value if v.macd else None,
    IndicatorField.MACD_SIGNAL: lambda v: v.macd.signal if v.macd else None,
    IndicatorField.MACD_HISTOGRAM: lambda v: v.macd.histogram if v.macd else None,
}


def field_value(vector: IndicatorVector, field: IndicatorField) -> Optional[float]:
    return FIELD_ACCESSORS[field](vector)
