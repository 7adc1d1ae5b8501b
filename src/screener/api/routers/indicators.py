# src/screener/api/routers/indicators.py
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from screener.api.responses import get_runtime, ok
from screener.common.exceptions import InvalidArgumentError, NotFoundError
from screener.runtime import ScreenerRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/indicators", tags=["Indicators"])


def _symbol_list(value: Any, name: str = "symbols") -> List[str]:
    if not isinstance(value, list) or not all(isinstance(s, str) for s in value):
        raise InvalidArgumentError(f"{name} array is required")
    return [s.strip().upper() for s in value if s.strip()]


@router.get("")
async def list_indicators(
    limit: Optional[int] = Query(default=None),
    runtime: ScreenerRuntime = Depends(get_runtime),
):
    """Bulk read of the cache, clamped to the configured ceiling."""
    settings = runtime.settings
    requested = limit if limit and limit > 0 else settings.default_bulk_limit
    vectors = runtime.store.get_all(min(requested, settings.max_bulk_limit))
    return ok([v.model_dump(mode="json") for v in vectors])


@router.post("/batch")
async def batch_indicators(
    body: Any = Body(default=None),
    runtime: ScreenerRuntime = Depends(get_runtime),
):
    """Vectors for the requested symbols; untracked symbols are left out."""
    symbols = _symbol_list(body.get("symbols") if isinstance(body, dict) else None)
    return ok([v.model_dump(mode="json") for v in runtime.store.get_many(symbols)])


@router.post("/refresh")
async def refresh_indicators(
    body: Any = Body(default=None),
    runtime: ScreenerRuntime = Depends(get_runtime),
):
    """Queue a refresh and return its job handle without waiting for it."""
    symbols = None
    if isinstance(body, dict) and body.get("symbols") is not None:
        symbols = _symbol_list(body["symbols"])

    job = runtime.worker.submit(symbols)
    logger.info("Refresh job %s queued (%s)", job.jobId, "all" if symbols is None else symbols)
    return ok(
        {"message": "Indicator refresh started", "jobId": job.jobId, "status": job.status.value}
    )


@router.get("/refresh/{job_id}")
async def refresh_status(job_id: str, runtime: ScreenerRuntime = Depends(get_runtime)):
    job = runtime.worker.get_job(job_id)
    if job is None:
        raise NotFoundError("Refresh job not found")
    return ok(job.to_dict())


@router.get("/{symbol}")
async def get_indicator(symbol: str, runtime: ScreenerRuntime = Depends(get_runtime)):
    vector = runtime.store.get(symbol.strip().upper())
    if vector is None:
        raise NotFoundError("Indicators not found for symbol")
    return ok(vector.model_dump(mode="json"))
