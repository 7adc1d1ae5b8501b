from enum import Enum
from typing import Dict, List

from pydantic import Field

from screener.screening.fields import IndicatorField
from screener.screening.models import FilterCondition, Operator, ScreenerFilter, SortOrder


class PresetCategory(str, Enum):
    TECHNICAL = "technical"
    MOVING_AVERAGES = "moving_averages"
    PRICE_VOLUME = "price_volume"
    MOMENTUM = "momentum"


class FilterPreset(ScreenerFilter):
    name: str
    description: str = ""
    category: PresetCategory = Field(description="Grouping shown to clients")


def _cond(field: IndicatorField, operator: Operator, value: float) -> FilterCondition:
    return FilterCondition(field=field, operator=operator, value=value)


F = IndicatorField
O = Operator  # noqa: E741

PRESETS: List[FilterPreset] = [
    # Technical signals
    FilterPreset(
        id="oversold",
        name="RSI Oversold",
        description="Stocks with RSI below 30, potentially undervalued",
        category=PresetCategory.TECHNICAL,
        conditions=[_cond(F.RSI14, O.LT, 30), _cond(F.VOLUME, O.GT, 100_000)],
        sortBy=F.RSI14,
        sortOrder=SortOrder.ASC,
    ),
    FilterPreset(
        id="overbought",
        name="RSI Overbought",
        description="Stocks with RSI above 70, potentially overextended",
        category=PresetCategory.TECHNICAL,
        conditions=[_cond(F.RSI14, O.GT, 70), _cond(F.VOLUME, O.GT, 100_000)],
        sortBy=F.RSI14,
        sortOrder=SortOrder.DESC,
    ),
    FilterPreset(
        id="rsiNeutral",
        name="RSI Neutral Zone",
        description="Stocks with RSI between 40-60, balanced momentum",
        category=PresetCategory.TECHNICAL,
        conditions=[
            _cond(F.RSI14, O.GTE, 40),
            _cond(F.RSI14, O.LTE, 60),
            _cond(F.VOLUME, O.GT, 500_000),
        ],
        sortBy=F.VOLUME,
        sortOrder=SortOrder.DESC,
    ),
    FilterPreset(
        id="macdBullish",
        name="MACD Bullish",
        description="Positive MACD histogram indicating bullish momentum",
        category=PresetCategory.TECHNICAL,
        conditions=[_cond(F.MACD_HISTOGRAM, O.GT, 0), _cond(F.VOLUME, O.GT, 500_000)],
        sortBy=F.CHANGE_PERCENT,
        sortOrder=SortOrder.DESC,
    ),
    # Price & volume
    FilterPreset(
        id="highVolume",
        name="High Volume Movers",
        description="Stocks with volume over 1M and significant price change",
        category=PresetCategory.PRICE_VOLUME,
        conditions=[_cond(F.VOLUME, O.GT, 1_000_000), _cond(F.CHANGE_PERCENT, O.GT, 2)],
        sortBy=F.VOLUME,
        sortOrder=SortOrder.DESC,
    ),
    FilterPreset(
        id="topGainers",
        name="Top Gainers",
        description="Biggest percentage gainers of the day",
        category=PresetCategory.PRICE_VOLUME,
        conditions=[_cond(F.CHANGE_PERCENT, O.GT, 3), _cond(F.VOLUME, O.GT, 500_000)],
        sortBy=F.CHANGE_PERCENT,
        sortOrder=SortOrder.DESC,
    ),
    FilterPreset(
        id="topLosers",
        name="Top Losers",
        description="Biggest percentage losers of the day",
        category=PresetCategory.PRICE_VOLUME,
        conditions=[_cond(F.CHANGE_PERCENT, O.LT, -3), _cond(F.VOLUME, O.GT, 500_000)],
        sortBy=F.CHANGE_PERCENT,
        sortOrder=SortOrder.ASC,
    ),
    FilterPreset(
        id="volumeSpike",
        name="Volume Spike",
        description="Unusually high trading volume today",
        category=PresetCategory.PRICE_VOLUME,
        conditions=[_cond(F.VOLUME, O.GT, 2_000_000)],
        sortBy=F.VOLUME,
        sortOrder=SortOrder.DESC,
    ),
    FilterPreset(
        id="priceBreakout",
        name="Price Breakout",
        description="Stocks up more than 5% with strong volume",
        category=PresetCategory.PRICE_VOLUME,
        conditions=[_cond(F.CHANGE_PERCENT, O.GT, 5), _cond(F.VOLUME, O.GT, 1_000_000)],
        sortBy=F.CHANGE_PERCENT,
        sortOrder=SortOrder.DESC,
    ),
    # Momentum
    FilterPreset(
        id="bullishMomentum",
        name="Bullish Momentum",
        description="Strong upward momentum with RSI confirmation",
        category=PresetCategory.MOMENTUM,
        conditions=[
            _cond(F.CHANGE_PERCENT, O.GT, 1),
            _cond(F.RSI14, O.GT, 50),
            _cond(F.VOLUME, O.GT, 500_000),
        ],
        sortBy=F.CHANGE_PERCENT,
        sortOrder=SortOrder.DESC,
    ),
    FilterPreset(
        id="bearishMomentum",
        name="Bearish Momentum",
        description="Strong downward momentum with RSI confirmation",
        category=PresetCategory.MOMENTUM,
        conditions=[
            _cond(F.CHANGE_PERCENT, O.LT, -1),
            _cond(F.RSI14, O.LT, 50),
            _cond(F.VOLUME, O.GT, 500_000),
        ],
        sortBy=F.CHANGE_PERCENT,
        sortOrder=SortOrder.ASC,
    ),
]

PRESETS_BY_ID: Dict[str, FilterPreset] = {preset.id: preset for preset in PRESETS}
