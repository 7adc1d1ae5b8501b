import json
import logging
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from screener.common.exceptions import ProtocolError, ScreenerError
from screener.realtime.coordinator import BroadcastCoordinator, ClientSink
from screener.realtime.schemas import (
    Frame,
    FilterUpdatePayload,
    MessageType,
    SubscribePayload,
    error_frame,
)
from screener.screening.registry import FilterRegistry

logger = logging.getLogger(__name__)

INVALID_FRAME_MESSAGE = "Invalid message format"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class ClientSession:
    """Protocol state machine for one client connection.

    A bad frame is answered with an error frame and never closes the connection; only
    close() (transport failure or client hang-up) ends the session.
    """

    def __init__(
        self,
        client_id: str,
        sink: ClientSink,
        coordinator: BroadcastCoordinator,
        registry: FilterRegistry,
    ) -> None:
        self.client_id = client_id
        self.sink = sink
        self.coordinator = coordinator
        self.registry = registry
        self.state = ConnectionState.CONNECTED
        self.filter_id: Optional[str] = None

        self.coordinator.connect(client_id, sink)

    async def handle_text(self, text: str) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        try:
            frame = self._parse(text)
            await self.handle_frame(frame)
        except ScreenerError as e:
            logger.warning("Client %s frame rejected: %s", self.client_id, e)
            await self._send_error(e.message)
        except TimeoutError as e:
            logger.warning("Client %s request timed out: %s", self.client_id, e)
            await self._send_error(str(e))

    def _parse(self, text: str) -> Frame:
        try:
            return Frame.model_validate(json.loads(text))
        except (ValueError, ValidationError) as e:
            raise ProtocolError(INVALID_FRAME_MESSAGE) from e

    async def handle_frame(self, frame: Frame) -> None:
        if frame.type == MessageType.SUBSCRIBE.value:
            payload = self._payload(SubscribePayload, frame)
            await self.coordinator.subscribe(self.client_id, payload.filterId)
            if self.client_id not in self.coordinator.clients:
                # Initial delivery failed and the coordinator dropped the client
                self.state = ConnectionState.CLOSED
                return
            self.filter_id = payload.filterId
            self.state = ConnectionState.SUBSCRIBED

        elif frame.type == MessageType.UNSUBSCRIBE.value:
            await self.coordinator.unsubscribe(self.client_id)
            self.filter_id = None
            self.state = ConnectionState.CONNECTED

        elif frame.type == MessageType.FILTER_UPDATE.value:
            payload = self._payload(FilterUpdatePayload, frame)
            screener_filter = self.registry.register(payload.filter)
            await self.coordinator.filter_updated(screener_filter.id)

        else:
            raise ProtocolError(f"Unknown message type: {frame.type}")

    def _payload(self, model, frame: Frame):
        try:
            return model.model_validate(frame.payload)
        except ValidationError as e:
            raise ProtocolError(f"Invalid {frame.type} payload") from e

    async def _send_error(self, message: str) -> None:
        try:
            await self.sink.send_text(error_frame(message))
        except Exception as e:
            logger.warning("Could not send error frame to %s: %r", self.client_id, e)

    async def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self.filter_id = None
        await self.coordinator.disconnect(self.client_id)
