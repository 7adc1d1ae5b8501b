from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from screener.common.time import now_ms
from screener.market.models import IndicatorVector
from screener.screening.models import ScreenerResult


class MessageType(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    FILTER_UPDATE = "filter_update"
    SCREENER_RESULTS = "screener_results"
    STOCK_UPDATE = "stock_update"
    ERROR = "error"


class Frame(BaseModel):
    """Envelope shared by every real-time message."""

    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[int] = None


class SubscribePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    filterId: str = Field(min_length=1)


class FilterUpdatePayload(BaseModel):
    filter: Dict[str, Any]


class ScreenerResultsPayload(BaseModel):
    results: ScreenerResult


class StockUpdatePayload(BaseModel):
    stock: IndicatorVector


class ErrorPayload(BaseModel):
    message: str


class OutboundFrame(BaseModel):
    type: MessageType
    payload: Union[ScreenerResultsPayload, StockUpdatePayload, ErrorPayload]
    timestamp: int = Field(default_factory=now_ms)

    def to_json(self) -> str:
        return self.model_dump_json()


def results_frame(result: ScreenerResult) -> str:
    return OutboundFrame(
        type=MessageType.SCREENER_RESULTS, payload=ScreenerResultsPayload(results=result)
    ).to_json()


def stock_update_frame(stock: IndicatorVector) -> str:
    return OutboundFrame(
        type=MessageType.STOCK_UPDATE, payload=StockUpdatePayload(stock=stock)
    ).to_json()


def error_frame(message: str) -> str:
    return OutboundFrame(type=MessageType.ERROR, payload=ErrorPayload(message=message)).to_json()
