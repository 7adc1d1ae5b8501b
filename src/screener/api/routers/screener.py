# src/screener/api/routers/screener.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from screener.api.responses import get_runtime, ok
from screener.common.exceptions import NotFoundError
from screener.runtime import ScreenerRuntime
from screener.screening.engine import evaluate
from screener.screening.fields import IndicatorField
from screener.screening.models import FilterCondition, ScreenerFilter, SortOrder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/screener", tags=["Screener"])

CUSTOM_FILTER_ID = "custom"


def _page_size(requested: Optional[int], runtime: ScreenerRuntime) -> int:
    """Requested page size (configured default when absent), capped at max_page_size."""
    settings = runtime.settings
    return min(requested or settings.default_page_size, settings.max_page_size)


class RunScreenerRequest(BaseModel):
    conditions: List[FilterCondition]
    sortBy: Optional[IndicatorField] = None
    sortOrder: SortOrder = SortOrder.ASC
    page: int = Field(default=1, ge=1)
    pageSize: Optional[int] = Field(default=None, ge=1)


@router.post("/run")
async def run_screener(
    request: RunScreenerRequest, runtime: ScreenerRuntime = Depends(get_runtime)
):
    screener_filter = ScreenerFilter(
        id=CUSTOM_FILTER_ID,
        conditions=request.conditions,
        sortBy=request.sortBy,
        sortOrder=request.sortOrder,
    )
    page_size = _page_size(request.pageSize, runtime)
    result = evaluate(screener_filter, runtime.store.snapshot(), request.page, page_size)
    return ok(result.model_dump(mode="json"))


@router.get("/presets")
async def list_presets(runtime: ScreenerRuntime = Depends(get_runtime)):
    return ok([preset.model_dump(mode="json") for preset in runtime.registry.list_presets()])


@router.get("/preset/{preset_id}")
async def run_preset(
    preset_id: str,
    page: int = Query(default=1, ge=1),
    pageSize: Optional[int] = Query(default=None, ge=1),
    runtime: ScreenerRuntime = Depends(get_runtime),
):
    preset = runtime.registry.presets.get(preset_id)
    if preset is None:
        raise NotFoundError("Preset not found")
    page_size = _page_size(pageSize, runtime)
    result = evaluate(preset, runtime.store.snapshot(), page, page_size)
    return ok(result.model_dump(mode="json"))


@router.post("/filters")
async def register_filter(
    body: Dict[str, Any] = Body(...),
    runtime: ScreenerRuntime = Depends(get_runtime),
):
    """Register or replace an ad-hoc filter; live subscribers get a fresh full result."""
    screener_filter = runtime.registry.register(body)
    await runtime.coordinator.filter_updated(screener_filter.id)
    return ok(screener_filter.model_dump(mode="json"))
