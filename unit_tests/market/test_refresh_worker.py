"""Tests for RefreshWorker command handling and job tracking."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from screener.market.sources import InMemoryBarSource
from screener.market.store import IndicatorStore, RefreshSummary
from screener.market.worker import JobStatus, RefreshCompleted, RefreshWorker


def make_worker(job_history: int = 100) -> RefreshWorker:
    store = IndicatorStore(InMemoryBarSource())
    return RefreshWorker(store, interval_seconds=0, job_history=job_history)


def test_submit_returns_queued_job() -> None:
    worker = make_worker()
    job = worker.submit(["AAPL"])

    assert job.status is JobStatus.QUEUED
    assert worker.get_job(job.jobId) is job
    assert worker.queue.qsize() == 1


def test_trigger_has_no_job() -> None:
    worker = make_worker()
    assert worker.trigger() is None
    assert worker.jobs == {}
    assert worker.queue.qsize() == 1


def test_job_history_is_bounded() -> None:
    worker = make_worker(job_history=2)
    first = worker.submit()
    worker.submit()
    worker.submit()

    assert len(worker.jobs) == 2
    assert worker.get_job(first.jobId) is None


@pytest.mark.asyncio
async def test_run_once_completes_job_and_notifies_listeners() -> None:
    worker = make_worker()
    listener: asyncio.Queue = asyncio.Queue()
    worker.add_listener(listener)
    summary = RefreshSummary(processed=2, changed=["AAPL"])

    with patch.object(worker.store, "refresh", AsyncMock(return_value=summary)):
        job = worker.submit()
        event = await worker.run_once(worker.queue.get_nowait())

    assert job.status is JobStatus.COMPLETED
    assert job.summary is summary
    assert job.startedAt is not None and job.finishedAt is not None
    assert isinstance(event, RefreshCompleted)
    assert event.job_ids == (job.jobId,)
    assert listener.get_nowait() is event


@pytest.mark.asyncio
async def test_queued_commands_are_merged() -> None:
    worker = make_worker()
    refresh = AsyncMock(return_value=RefreshSummary())

    with patch.object(worker.store, "refresh", refresh):
        worker.submit(["AAPL"])
        worker.trigger(["MSFT"])
        worker.submit(["AAPL", "NVDA"])
        event = await worker.run_once(worker.queue.get_nowait())

    refresh.assert_awaited_once_with(["AAPL", "MSFT", "NVDA"])
    assert len(event.job_ids) == 2
    assert worker.queue.empty()


@pytest.mark.asyncio
async def test_full_refresh_wins_when_merging() -> None:
    worker = make_worker()
    refresh = AsyncMock(return_value=RefreshSummary())

    with patch.object(worker.store, "refresh", refresh):
        worker.submit(["AAPL"])
        worker.submit()
        await worker.run_once(worker.queue.get_nowait())

    refresh.assert_awaited_once_with(None)


@pytest.mark.asyncio
async def test_failed_cycle_marks_job_failed() -> None:
    worker = make_worker()

    with patch.object(worker.store, "refresh", AsyncMock(side_effect=RuntimeError("boom"))):
        job = worker.submit()
        await worker.run_once(worker.queue.get_nowait())

    assert job.status is JobStatus.FAILED
    assert job.error == "boom"
    assert worker.is_refreshing is False


@pytest.mark.asyncio
async def test_job_to_dict_is_wire_friendly() -> None:
    worker = make_worker()
    job = worker.submit(["AAPL"])
    data = job.to_dict()

    assert data["status"] == "queued"
    assert data["symbols"] == ["AAPL"]
    assert data["summary"] is None


@pytest.mark.asyncio
async def test_tick_disabled_with_zero_interval() -> None:
    worker = make_worker()
    await asyncio.wait_for(worker.tick(), timeout=1)
    assert worker.queue.empty()


@pytest.mark.asyncio
async def test_start_and_stop_process_queue() -> None:
    source = InMemoryBarSource()
    worker = RefreshWorker(IndicatorStore(source), interval_seconds=0)
    listener: asyncio.Queue = asyncio.Queue()
    worker.add_listener(listener)

    worker.start()
    job = worker.submit()
    event = await asyncio.wait_for(listener.get(), timeout=2)
    await worker.stop()

    assert job.jobId in event.job_ids
    assert job.status is JobStatus.COMPLETED
