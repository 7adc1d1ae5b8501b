from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from screener.market.models import IndicatorVector
from screener.screening.fields import IndicatorField


class Operator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"
    BETWEEN = "between"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class FilterCondition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    field: IndicatorField = Field(description="Numeric indicator field to test")
    operator: Operator
    value: Union[float, Tuple[float, float]] = Field(
        description="Single number, or [low, high] for between"
    )

    @model_validator(mode="after")
    def check_value_shape(self) -> "FilterCondition":
        if self.operator is Operator.BETWEEN:
            if not isinstance(self.value, tuple):
                raise ValueError("between requires a [low, high] pair")
            low, high = self.value
            if low > high:
                raise ValueError(f"between bounds out of order: [{low}, {high}]")
        elif isinstance(self.value, tuple):
            raise ValueError(f"{self.operator.value} requires a single number")
        return self


class ScreenerFilter(BaseModel):
    """Ordered AND-combination of conditions with an optional sort."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    id: str = Field(min_length=1)
    conditions: List[FilterCondition] = Field(default_factory=list)
    sortBy: Optional[IndicatorField] = None
    sortOrder: SortOrder = SortOrder.ASC


class ScreenerResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stocks: List[IndicatorVector]
    total: int = Field(description="Match count before pagination", ge=0)
    page: int = Field(ge=1)
    pageSize: int = Field(ge=1)
    filterId: str
    timestamp: int = Field(description="Computation time, epoch ms")

    @property
    def symbols(self) -> List[str]:
        return [stock.symbol for stock in self.stocks]
