"""Tests for filter evaluation."""

from typing import Optional

import pytest

from screener.common.exceptions import InvalidArgumentError
from screener.market.models import IndicatorVector, MACDValues
from screener.screening.engine import evaluate, matches_condition, screen
from screener.screening.fields import IndicatorField
from screener.screening.models import FilterCondition, Operator, ScreenerFilter, SortOrder


def make_vector(
    symbol: str,
    volume: float = 1_000_000.0,
    price: float = 100.0,
    change: float = 0.0,
    rsi14: Optional[float] = None,
    macd: Optional[MACDValues] = None,
) -> IndicatorVector:
    return IndicatorVector(
        symbol=symbol,
        price=price,
        volume=volume,
        changePercent=change,
        rsi14=rsi14,
        macd=macd,
        updatedAt=1,
    )


def cond(field: str, operator: str, value) -> FilterCondition:
    return FilterCondition(field=field, operator=operator, value=value)


def test_volume_filter_keeps_snapshot_order() -> None:
    snapshot = [
        make_vector("LOW", volume=50_000),
        make_vector("MID", volume=150_000),
        make_vector("HIGH", volume=1_000_000),
    ]
    screener_filter = ScreenerFilter(id="vol", conditions=[cond("volume", "gt", 100_000)])

    result = evaluate(screener_filter, snapshot, page=1, page_size=50)

    assert result.total == 2
    assert result.symbols == ["MID", "HIGH"]
    assert result.filterId == "vol"


@pytest.mark.parametrize("rsi,expected", [(20, True), (80, True), (19.999, False), (80.001, False)])
def test_between_is_inclusive(rsi: float, expected: bool) -> None:
    condition = cond("rsi14", "between", [20, 80])
    assert matches_condition(make_vector("A", rsi14=rsi), condition) is expected


@pytest.mark.parametrize(
    "operator,value,expected",
    [
        ("gt", 100, False),
        ("gte", 100, True),
        ("lt", 100, False),
        ("lte", 100, True),
        ("eq", 100, True),
        ("neq", 100, False),
        ("neq", 99, True),
    ],
)
def test_comparison_operators(operator: str, value: float, expected: bool) -> None:
    vector = make_vector("A", price=100)
    assert matches_condition(vector, cond("price", operator, value)) is expected


def test_missing_field_never_matches() -> None:
    vector = make_vector("A", rsi14=None)
    for operator in ("gt", "lt", "neq"):
        assert matches_condition(vector, cond("rsi14", operator, 50)) is False
    assert matches_condition(vector, cond("rsi14", "between", [0, 100])) is False
    assert matches_condition(vector, cond("macdHistogram", "gt", -1e9)) is False


def test_macd_fields_are_selectable() -> None:
    vector = make_vector("A", macd=MACDValues(value=1.0, signal=0.4, histogram=0.6))
    assert matches_condition(vector, cond("macdHistogram", "gt", 0.5))
    assert matches_condition(vector, cond("macdSignal", "lt", 0.5))
    assert matches_condition(vector, cond("macdValue", "eq", 1.0))


def test_all_conditions_must_pass() -> None:
    screener_filter = ScreenerFilter(
        id="both", conditions=[cond("volume", "gt", 100), cond("changePercent", "gt", 2)]
    )
    snapshot = [make_vector("A", change=3), make_vector("B", change=1)]
    assert [v.symbol for v in screen(screener_filter, snapshot)] == ["A"]


def test_condition_order_does_not_change_result() -> None:
    snapshot = [make_vector(f"S{i}", volume=i * 1000, change=i - 5) for i in range(10)]
    a = cond("volume", "gte", 3000)
    b = cond("changePercent", "lt", 3)
    forward = screen(ScreenerFilter(id="f", conditions=[a, b]), snapshot)
    backward = screen(ScreenerFilter(id="f", conditions=[b, a]), snapshot)
    assert forward == backward


def test_sort_descending_with_symbol_tiebreak() -> None:
    snapshot = [
        make_vector("B", volume=200),
        make_vector("C", volume=100),
        make_vector("A", volume=200),
    ]
    screener_filter = ScreenerFilter(id="s", sortBy="volume", sortOrder="desc")
    assert [v.symbol for v in screen(screener_filter, snapshot)] == ["A", "B", "C"]


def test_sort_ascending_is_default() -> None:
    snapshot = [make_vector("B", price=3), make_vector("A", price=1), make_vector("C", price=2)]
    screener_filter = ScreenerFilter(id="s", sortBy=IndicatorField.PRICE)
    assert screener_filter.sortOrder is SortOrder.ASC
    assert [v.symbol for v in screen(screener_filter, snapshot)] == ["A", "C", "B"]


def test_empty_filter_matches_symbols_with_sort_field() -> None:
    snapshot = [make_vector("A", rsi14=40), make_vector("B"), make_vector("C", rsi14=30)]
    assert len(screen(ScreenerFilter(id="all"), snapshot)) == 3
    sorted_filter = ScreenerFilter(id="all", sortBy="rsi14")
    assert [v.symbol for v in screen(sorted_filter, snapshot)] == ["C", "A"]


def test_pagination_after_sort() -> None:
    snapshot = [make_vector(f"S{i:02d}", price=float(i)) for i in range(25)]
    screener_filter = ScreenerFilter(id="p", sortBy="price", sortOrder="desc")

    page2 = evaluate(screener_filter, snapshot, page=2, page_size=10)
    page3 = evaluate(screener_filter, snapshot, page=3, page_size=10)
    page9 = evaluate(screener_filter, snapshot, page=9, page_size=10)

    assert page2.total == 25
    assert page2.symbols[0] == "S14"
    assert len(page3.stocks) == 5
    assert page9.stocks == []
    assert page9.total == 25


def test_evaluate_is_pure() -> None:
    snapshot = [make_vector(f"S{i}", volume=(i * 7919) % 1000, price=i) for i in range(50)]
    screener_filter = ScreenerFilter(
        id="pure", conditions=[cond("volume", "gt", 200)], sortBy="volume", sortOrder="desc"
    )

    first = evaluate(screener_filter, snapshot, 1, 20, timestamp=5)
    second = evaluate(screener_filter, snapshot, 1, 20, timestamp=5)

    assert first == second
    assert first.total == second.total


def test_evaluate_rejects_bad_page() -> None:
    screener_filter = ScreenerFilter(id="x")
    with pytest.raises(InvalidArgumentError):
        evaluate(screener_filter, [], page=0)
    with pytest.raises(InvalidArgumentError):
        evaluate(screener_filter, [], page=1, page_size=0)


def test_unvalidated_pairing_is_a_type_error() -> None:
    condition = FilterCondition.model_construct(
        field=IndicatorField.PRICE, operator=Operator.GT, value=(1.0, 2.0)
    )
    with pytest.raises(InvalidArgumentError):
        matches_condition(make_vector("A"), condition)
