"""Subscription and broadcast coordination for real-time screener clients.

Every filter with at least one subscriber owns a FilterChannel: its member set, the last
result broadcast to those members, and a lock that keeps evaluation and delivery for that
filter strictly ordered. Channels for different filters run independently.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Set, Tuple

from screener.common.exceptions import NotFoundError
from screener.common.time import now_ms
from screener.market.models import IndicatorVector
from screener.market.store import IndicatorStore
from screener.market.worker import RefreshCompleted
from screener.realtime.schemas import results_frame, stock_update_frame
from screener.screening.engine import screen
from screener.screening.models import ScreenerFilter, ScreenerResult
from screener.screening.registry import FilterRegistry

logger = logging.getLogger(__name__)


class ClientSink(Protocol):
    """Outbound side of a client connection."""

    async def send_text(self, data: str) -> None: ...


class FilterState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    BROADCASTING = "broadcasting"


@dataclass(frozen=True)
class Evaluation:
    """Full match list for a filter plus the page clients see."""

    symbols: Tuple[str, ...]
    vectors: Dict[str, IndicatorVector]
    result: ScreenerResult


@dataclass
class FilterChannel:
    filter_id: str
    members: Set[str] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    state: FilterState = FilterState.IDLE
    pending: bool = False
    invalidated: bool = False
    baseline: Optional[Evaluation] = None
    # Subscribes and refreshes holding or waiting for the lock
    active: int = 0


@dataclass
class CoordinatorMetrics:
    evaluations: int = 0
    evaluation_timeouts: int = 0
    full_broadcasts: int = 0
    stock_updates: int = 0
    frames_sent: int = 0
    frames_dropped: int = 0
    coalesced: int = 0


@dataclass(frozen=True)
class BroadcastPlan:
    full: Optional[ScreenerResult] = None
    updates: Tuple[IndicatorVector, ...] = ()

    @property
    def empty(self) -> bool:
        return self.full is None and not self.updates


def plan_broadcast(baseline: Optional[Evaluation], current: Evaluation) -> BroadcastPlan:
    """Decide which frames bring members from `baseline` to `current`.

    No baseline or a membership change sends the full result. Same membership with the
    visible page in the same order sends one stock_update per changed on-page symbol.
    updatedAt alone never counts as a change.
    """
    if baseline is None or set(baseline.symbols) != set(current.symbols):
        return BroadcastPlan(full=current.result)

    if baseline.result.symbols != current.result.symbols:
        return BroadcastPlan(full=current.result)

    updates = tuple(
        stock
        for stock in current.result.stocks
        if not baseline.vectors[stock.symbol].same_values(stock)
    )
    return BroadcastPlan(updates=updates)


class BroadcastCoordinator:
    def __init__(
        self,
        store: IndicatorStore,
        registry: FilterRegistry,
        page_size: int = 50,
        evaluation_timeout: Optional[float] = 5.0,
        send_timeout: Optional[float] = 5.0,
    ) -> None:
        self.store = store
        self.registry = registry
        self.page_size = page_size
        self.evaluation_timeout = evaluation_timeout
        self.send_timeout = send_timeout

        self.clients: Dict[str, ClientSink] = {}
        self.subscriptions: Dict[str, str] = {}
        self.channels: Dict[str, FilterChannel] = {}

        self.inbox: asyncio.Queue[RefreshCompleted] = asyncio.Queue()
        self.metrics = CoordinatorMetrics()

    # Connections

    def connect(self, client_id: str, sink: ClientSink) -> None:
        self.clients[client_id] = sink
        logger.info("Client %s connected. Total clients: %d", client_id, len(self.clients))

    async def disconnect(self, client_id: str) -> None:
        if self.clients.pop(client_id, None) is None:
            return
        filter_id = self.subscriptions.pop(client_id, None)
        if filter_id is not None:
            self._leave(client_id, filter_id)
        logger.info("Client %s disconnected. Total clients: %d", client_id, len(self.clients))

    # Subscriptions

    async def subscribe(self, client_id: str, filter_id: str) -> ScreenerResult:
        """Send the current full result to this client, then join the filter's group.

        Replaces any previous subscription held by the client.
        """
        if client_id not in self.clients:
            raise NotFoundError(f"Client not connected: {client_id}")
        screener_filter = self.registry.resolve(filter_id)

        previous = self.subscriptions.get(client_id)
        if previous is not None and previous != filter_id:
            self.subscriptions.pop(client_id)
            self._leave(client_id, previous)

        channel = self.channels.get(filter_id)
        if channel is None:
            channel = FilterChannel(filter_id=filter_id)
            self.channels[filter_id] = channel

        channel.active += 1
        try:
            async with channel.lock:
                evaluation = await self._evaluate(screener_filter)
                if evaluation is None:
                    raise TimeoutError(f"Evaluation of filter {filter_id} timed out")

                if not await self._send(client_id, results_frame(evaluation.result)):
                    return evaluation.result

                # Members may have left during the send; the channel stays registered
                # while active, so the client always joins the live group
                if client_id in self.clients:
                    if not channel.members:
                        channel.baseline = evaluation
                    channel.members.add(client_id)
                    self.subscriptions[client_id] = filter_id
                await self._drain_pending(channel)
        finally:
            channel.active -= 1
            self._drop_if_empty(channel)

        logger.info(
            "Client %s subscribed to %s (%d members)", client_id, filter_id, len(channel.members)
        )
        return evaluation.result

    async def unsubscribe(self, client_id: str) -> Optional[str]:
        filter_id = self.subscriptions.pop(client_id, None)
        if filter_id is not None:
            self._leave(client_id, filter_id)
            logger.info("Client %s unsubscribed from %s", client_id, filter_id)
        return filter_id

    def _leave(self, client_id: str, filter_id: str) -> None:
        channel = self.channels.get(filter_id)
        if channel is None:
            return
        channel.members.discard(client_id)
        self._drop_if_empty(channel)

    def _drop_if_empty(self, channel: FilterChannel) -> None:
        if channel.members or channel.active:
            return
        if self.channels.get(channel.filter_id) is channel:
            del self.channels[channel.filter_id]
            logger.debug("Discarded channel state for %s", channel.filter_id)

    def subscribers(self, filter_id: str) -> Set[str]:
        channel = self.channels.get(filter_id)
        return set(channel.members) if channel else set()

    # Refresh handling

    async def filter_updated(self, filter_id: str) -> None:
        """Re-broadcast the full result of a redefined filter to its group."""
        channel = self.channels.get(filter_id)
        if channel is None:
            return
        channel.invalidated = True
        await self._refresh_channel(channel)

    async def on_refresh(self, event: Optional[RefreshCompleted] = None) -> None:
        """Re-evaluate every filter with subscribers after a store refresh."""
        if event is not None and not event.summary.changed:
            return
        channels = [c for c in self.channels.values() if c.members]
        if channels:
            await asyncio.gather(*(self._refresh_channel(c) for c in channels))

    async def _refresh_channel(self, channel: FilterChannel) -> None:
        if channel.lock.locked():
            # At most one evaluation in flight per filter; fold this one into the next pass
            channel.pending = True
            self.metrics.coalesced += 1
            return
        channel.active += 1
        try:
            async with channel.lock:
                channel.pending = True
                await self._drain_pending(channel)
        finally:
            channel.active -= 1
            self._drop_if_empty(channel)

    async def _drain_pending(self, channel: FilterChannel) -> None:
        while channel.pending and channel.members:
            channel.pending = False
            await self._evaluate_and_broadcast(channel)

    async def _evaluate_and_broadcast(self, channel: FilterChannel) -> None:
        try:
            screener_filter = self.registry.resolve(channel.filter_id)
        except NotFoundError:
            logger.warning("Filter %s no longer resolvable, skipping", channel.filter_id)
            return

        if channel.invalidated:
            channel.invalidated = False
            channel.baseline = None

        evaluation = await self._evaluate(screener_filter, channel)
        if evaluation is None:
            return

        plan = plan_broadcast(channel.baseline, evaluation)
        channel.baseline = evaluation
        if plan.empty:
            return

        channel.state = FilterState.BROADCASTING
        try:
            members = list(channel.members)
            if plan.full is not None:
                self.metrics.full_broadcasts += 1
                await self._deliver(members, [results_frame(plan.full)])
            else:
                self.metrics.stock_updates += len(plan.updates)
                await self._deliver(members, [stock_update_frame(s) for s in plan.updates])
        finally:
            channel.state = FilterState.IDLE

    async def _evaluate(
        self, screener_filter: ScreenerFilter, channel: Optional[FilterChannel] = None
    ) -> Optional[Evaluation]:
        if channel is not None:
            channel.state = FilterState.EVALUATING
        snapshot = self.store.snapshot()
        try:
            matched = await asyncio.wait_for(
                asyncio.to_thread(screen, screener_filter, snapshot), self.evaluation_timeout
            )
        except asyncio.TimeoutError:
            self.metrics.evaluation_timeouts += 1
            logger.warning(
                "Evaluation of %s timed out after %ss, retrying on next refresh",
                screener_filter.id,
                self.evaluation_timeout,
            )
            return None
        finally:
            if channel is not None:
                channel.state = FilterState.IDLE

        self.metrics.evaluations += 1
        result = ScreenerResult(
            stocks=matched[: self.page_size],
            total=len(matched),
            page=1,
            pageSize=self.page_size,
            filterId=screener_filter.id,
            timestamp=now_ms(),
        )
        return Evaluation(
            symbols=tuple(v.symbol for v in matched),
            vectors={v.symbol: v for v in matched},
            result=result,
        )

    # Delivery

    async def _deliver(self, client_ids: List[str], frames: List[str]) -> None:
        results = await asyncio.gather(
            *(self._send_all(client_id, frames) for client_id in client_ids)
        )
        dead = [client_id for client_id, ok in zip(client_ids, results) if not ok]
        for client_id in dead:
            await self.disconnect(client_id)

    async def _send_all(self, client_id: str, frames: List[str]) -> bool:
        for frame in frames:
            if not await self._send(client_id, frame, cleanup=False):
                return False
        return True

    async def _send(self, client_id: str, frame: str, cleanup: bool = True) -> bool:
        """Deliver one frame; a failing client is dropped without affecting others."""
        sink = self.clients.get(client_id)
        if sink is None:
            return False
        try:
            await asyncio.wait_for(sink.send_text(frame), self.send_timeout)
        except Exception as e:
            self.metrics.frames_dropped += 1
            logger.warning("Dropping client %s after failed send: %r", client_id, e)
            if cleanup:
                await self.disconnect(client_id)
            return False
        self.metrics.frames_sent += 1
        return True

    # Event loop

    async def run(self) -> None:
        """Consume RefreshCompleted events, coalescing any that queue up meanwhile."""
        logger.info("Broadcast coordinator started")
        try:
            while True:
                event = await self.inbox.get()
                changed = bool(event.summary.changed)
                while not self.inbox.empty():
                    changed = changed or bool(self.inbox.get_nowait().summary.changed)
                if not changed:
                    continue
                try:
                    await self.on_refresh()
                except Exception:
                    logger.exception("Unhandled exception while broadcasting refresh")
        except asyncio.CancelledError:
            logger.info(
                "Broadcast coordinator stopped - evaluations: %d, frames sent: %d, dropped: %d",
                self.metrics.evaluations,
                self.metrics.frames_sent,
                self.metrics.frames_dropped,
            )
            raise

    def stats(self) -> dict:
        return {
            "clients": len(self.clients),
            "activeFilters": {fid: len(c.members) for fid, c in self.channels.items()},
            "evaluations": self.metrics.evaluations,
            "fullBroadcasts": self.metrics.full_broadcasts,
            "stockUpdates": self.metrics.stock_updates,
            "framesSent": self.metrics.frames_sent,
            "framesDropped": self.metrics.frames_dropped,
        }
