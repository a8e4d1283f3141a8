"""
Shared contract of the realtime transports: typed event framing, client/server
event echo on the event bus, and connection state bookkeeping.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from src.realtime_session.enums import ConnectionState
from src.realtime_session.errors import NotConnectedError, TransportError
from src.realtime_session.event_handler import Handler, RealtimeEventHandler
from src.realtime_session.utils import generate_id
from utils.ml_logging import get_logger

logger = get_logger("realtime_session.transport")


class RealtimeTransport(ABC):
    """
    Connect, send typed events, receive typed events, report state, disconnect.

    Incoming events are dispatched once as ``server.<type>`` and outgoing
    events are echoed once as ``client.<type>``; subscribe to ``server.*`` or
    ``client.*`` to see all of them. Local conditions are dispatched as
    ``error`` and ``close``.
    """

    name = "transport"

    def __init__(self) -> None:
        self.events = RealtimeEventHandler()
        self.state: ConnectionState = ConnectionState.NEW

    # ---------------------------
    # Event bus delegation
    # ---------------------------

    def on(self, event_name: str, handler: Handler) -> None:
        self.events.on(event_name, handler)

    def off(self, event_name: str, handler: Optional[Handler] = None) -> None:
        self.events.off(event_name, handler)

    def clear_event_handlers(self) -> None:
        self.events.clear_event_handlers()

    async def wait_for_next(self, event_name: str, timeout: Optional[float] = None) -> Any:
        return await self.events.wait_for_next(event_name, timeout=timeout)

    def dispatch(self, event_name: str, event: Any = None) -> None:
        self.events.dispatch(event_name, event)

    # ---------------------------
    # Contract
    # ---------------------------

    @abstractmethod
    async def connect(self, **kwargs: Any) -> bool:
        ...

    @abstractmethod
    async def disconnect(self) -> bool:
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def _write(self, message: str) -> None:
        """Write one serialized event to the underlying channel."""

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(f"[{self.name}] connection state {self.state} -> {state}")
            self.state = state

    async def send(self, event_name: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send an event to the peer.

        Args:
            event_name (str): Type/name of the event.
            data (Optional[Dict[str, Any]]): Payload fields merged into the event.

        Raises:
            NotConnectedError: If the channel is not open.
            TransportError: If data is not a dictionary or the write fails.
        """
        if not self.is_connected():
            raise NotConnectedError(f"{self.__class__.__name__} is not connected")

        data = {} if data is None else data
        if not isinstance(data, dict):
            logger.error("Provided data is not a dictionary.")
            raise TransportError("data must be a dictionary")

        event = {
            "event_id": generate_id("evt_"),
            "type": event_name,
            **data,
        }
        self.dispatch(f"client.{event_name}", event)
        logger.debug(f"[{self.name}] sent: {event_name}")

        try:
            await self._write(json.dumps(event))
        except TransportError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] failed to send event '{event_name}': {e}", exc_info=True)
            raise TransportError(f"Failed to send message: {e}") from e
        return True

    def _handle_message(self, message: Any) -> None:
        """
        Parse one inbound frame and dispatch it; malformed frames become a
        local ``error`` event and never close the connection.
        """
        try:
            event = json.loads(message)
            if not isinstance(event, dict) or not isinstance(event.get("type"), str):
                raise ValueError("event must be an object with a string 'type'")
        except (TypeError, ValueError) as e:
            logger.warning(f"[{self.name}] failed to decode incoming message: {e}")
            self.dispatch(
                "error",
                {
                    "type": "invalid_message",
                    "message": "Failed to parse message from server",
                    "error": str(e),
                },
            )
            return

        logger.debug(f"[{self.name}] received: {event['type']}")
        if event["type"] == "error":
            logger.error(f"[{self.name}] Realtime API error event: {event}")

        self.dispatch(f"server.{event['type']}", event)
