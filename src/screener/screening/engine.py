"""Stateless filter evaluation over an indicator snapshot.

The same (filter, snapshot) input always yields the same matches in the same order;
the coordinator's diffing relies on it.
"""

import logging
import operator as op
from typing import Callable, Dict, Iterable, List, Optional

from screener.common.exceptions import InvalidArgumentError
from screener.common.time import now_ms
from screener.market.models import IndicatorVector
from screener.screening.fields import field_value
from screener.screening.models import (
    FilterCondition,
    Operator,
    ScreenerFilter,
    ScreenerResult,
    SortOrder,
)

logger = logging.getLogger(__name__)

COMPARATORS: Dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
    Operator.LT: op.lt,
    Operator.LTE: op.le,
    Operator.EQ: op.eq,
    Operator.NEQ: op.ne,
}


def matches_condition(vector: IndicatorVector, condition: FilterCondition) -> bool:
    """Test one condition; an absent field never matches."""
    actual = field_value(vector, condition.field)
    if actual is None:
        return False

    if condition.operator is Operator.BETWEEN:
        if not isinstance(condition.value, tuple):
            raise InvalidArgumentError("between requires a [low, high] pair")
        low, high = condition.value
        return low <= actual <= high

    if isinstance(condition.value, tuple):
        raise InvalidArgumentError(f"{condition.operator.value} requires a single number")
    return COMPARATORS[condition.operator](actual, condition.value)


def matches(vector: IndicatorVector, screener_filter: ScreenerFilter) -> bool:
    if screener_filter.sortBy is not None and field_value(vector, screener_filter.sortBy) is None:
        return False
    return all(matches_condition(vector, c) for c in screener_filter.conditions)


def screen(
    screener_filter: ScreenerFilter, snapshot: Iterable[IndicatorVector]
) -> List[IndicatorVector]:
    """Every matching vector, sorted; ties break on symbol, no sortBy keeps snapshot order."""
    matched = [v for v in snapshot if matches(v, screener_filter)]

    sort_by = screener_filter.sortBy
    if sort_by is None:
        return matched

    sign = -1.0 if screener_filter.sortOrder is SortOrder.DESC else 1.0
    return sorted(
        matched,
        key=lambda v: (sign * field_value(v, sort_by), v.symbol),  # type: ignore[operator]
    )


def evaluate(
    screener_filter: ScreenerFilter,
    snapshot: Iterable[IndicatorVector],
    page: int = 1,
    page_size: int = 50,
    timestamp: Optional[int] = None,
) -> ScreenerResult:
    """Screen the snapshot and return one page of the result.

    Args:
        screener_filter: Validated filter definition.
        snapshot: Vectors to test, in store order.
        page: 1-based page number.
        page_size: Maximum number of vectors returned.
        timestamp: Computation time in epoch ms (default: wall clock).
    """
    if page < 1:
        raise InvalidArgumentError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise InvalidArgumentError(f"pageSize must be >= 1, got {page_size}")

    matched = screen(screener_filter, snapshot)
    start = (page - 1) * page_size
    return ScreenerResult(
        stocks=matched[start : start + page_size],
        total=len(matched),
        page=page,
        pageSize=page_size,
        filterId=screener_filter.id,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )
