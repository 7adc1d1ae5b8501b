import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set, Tuple

from screener.common.time import now_ms
from screener.market.store import IndicatorStore, RefreshSummary

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RefreshJob:
    jobId: str
    symbols: Optional[Tuple[str, ...]] = None
    status: JobStatus = JobStatus.QUEUED
    createdAt: int = field(default_factory=now_ms)
    startedAt: Optional[int] = None
    finishedAt: Optional[int] = None
    summary: Optional[RefreshSummary] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "jobId": self.jobId,
            "status": self.status.value,
            "symbols": list(self.symbols) if self.symbols is not None else None,
            "createdAt": self.createdAt,
            "startedAt": self.startedAt,
            "finishedAt": self.finishedAt,
            "summary": self.summary.to_dict() if self.summary else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class RefreshCommand:
    symbols: Optional[Tuple[str, ...]] = None
    job_id: Optional[str] = None


@dataclass(frozen=True)
class RefreshCompleted:
    """Published to listeners after every refresh cycle."""

    summary: RefreshSummary
    job_ids: Tuple[str, ...] = ()


class RefreshWorker:
    """Consumes refresh commands and runs them against the store one cycle at a time.

    Commands that pile up while a cycle runs are merged into the next cycle. Completion is
    published as a RefreshCompleted event on every listener queue.
    """

    def __init__(
        self,
        store: IndicatorStore,
        interval_seconds: float = 60.0,
        job_history: int = 100,
    ) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self.job_history = job_history

        self.queue: asyncio.Queue[RefreshCommand] = asyncio.Queue()
        self.jobs: OrderedDict[str, RefreshJob] = OrderedDict()
        self.listeners: List[asyncio.Queue] = []
        self.is_refreshing = False

        self._tasks: List[asyncio.Task] = []

    def add_listener(self, queue: asyncio.Queue) -> None:
        self.listeners.append(queue)

    def submit(self, symbols: Optional[List[str]] = None) -> RefreshJob:
        """Enqueue a refresh and return a pollable job handle immediately.

        Args:
            symbols: Symbols to refresh, all tracked symbols when None.
        """
        key = tuple(symbols) if symbols is not None else None
        job = RefreshJob(jobId=uuid.uuid4().hex, symbols=key)
        self.jobs[job.jobId] = job
        while len(self.jobs) > self.job_history:
            self.jobs.popitem(last=False)

        self.queue.put_nowait(RefreshCommand(symbols=key, job_id=job.jobId))
        return job

    def trigger(self, symbols: Optional[List[str]] = None) -> None:
        """Enqueue a refresh without a job handle (periodic and streaming triggers)."""
        key = tuple(symbols) if symbols is not None else None
        self.queue.put_nowait(RefreshCommand(symbols=key))

    def get_job(self, job_id: str) -> Optional[RefreshJob]:
        return self.jobs.get(job_id)

    def _drain(self, first: RefreshCommand) -> Tuple[Optional[List[str]], List[str]]:
        commands = [first]
        while not self.queue.empty():
            commands.append(self.queue.get_nowait())

        job_ids = [c.job_id for c in commands if c.job_id is not None]
        if any(c.symbols is None for c in commands):
            return None, job_ids

        merged: Set[str] = set()
        ordered: List[str] = []
        for command in commands:
            for symbol in command.symbols or ():
                if symbol not in merged:
                    merged.add(symbol)
                    ordered.append(symbol)
        return ordered, job_ids

    async def run_once(self, command: RefreshCommand) -> RefreshCompleted:
        symbols, job_ids = self._drain(command)
        jobs = [self.jobs[j] for j in job_ids if j in self.jobs]
        for job in jobs:
            job.status = JobStatus.RUNNING
            job.startedAt = now_ms()

        self.is_refreshing = True
        try:
            summary = await self.store.refresh(symbols)
        except Exception as e:
            logger.exception("Refresh cycle failed")
            for job in jobs:
                job.status = JobStatus.FAILED
                job.error = str(e)
                job.finishedAt = now_ms()
            summary = RefreshSummary(version=self.store.version)
        else:
            for job in jobs:
                job.status = JobStatus.COMPLETED
                job.summary = summary
                job.finishedAt = now_ms()
        finally:
            self.is_refreshing = False

        event = RefreshCompleted(summary=summary, job_ids=tuple(job_ids))
        for listener in self.listeners:
            listener.put_nowait(event)
        return event

    async def run(self) -> None:
        logger.info("Refresh worker started")
        try:
            while True:
                command = await self.queue.get()
                await self.run_once(command)
        except asyncio.CancelledError:
            logger.info(
                "Refresh worker stopped - cycles: %d, processed: %d, failed: %d",
                self.store.metrics.cycles,
                self.store.metrics.processed,
                self.store.metrics.failed,
            )
            raise

    async def tick(self) -> None:
        """Submit a full refresh every interval; does nothing when the interval is 0."""
        if self.interval_seconds <= 0:
            return
        while True:
            await asyncio.sleep(self.interval_seconds)
            if self.is_refreshing:
                logger.debug("Refresh in progress, skipping periodic trigger")
                continue
            self.trigger()

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self.run(), name="refresh-worker"),
            asyncio.create_task(self.tick(), name="refresh-ticker"),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
