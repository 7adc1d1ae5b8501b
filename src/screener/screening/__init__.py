from screener.screening.engine import evaluate, screen
from screener.screening.fields import IndicatorField
from screener.screening.models import (
    FilterCondition,
    Operator,
    ScreenerFilter,
    ScreenerResult,
    SortOrder,
)
from screener.screening.registry import FilterRegistry

__all__ = [
    "FilterCondition",
    "FilterRegistry",
    "IndicatorField",
    "Operator",
    "ScreenerFilter",
    "ScreenerResult",
    "SortOrder",
    "evaluate",
    "screen",
]
