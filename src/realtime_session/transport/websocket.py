"""
Realtime WebSocket transport.
Keeps one long-lived socket to the realtime endpoint; reconnection is left to the caller.
"""

import asyncio
from typing import Optional

import websockets

from src.realtime_session import settings
from src.realtime_session.enums import ConnectionState
from src.realtime_session.errors import AlreadyConnectedError, NotConnectedError, TransportError
from src.realtime_session.transport.base import RealtimeTransport
from utils.ml_logging import get_logger

logger = get_logger("realtime_session.transport.websocket")


class RealtimeAPI(RealtimeTransport):
    """
    WebSocket client for connecting and interacting with the Realtime API.
    """

    name = "websocket"

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.url: str = url or settings.REALTIME_WS_URL
        self.api_key: str = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model: str = model or settings.REALTIME_MODEL
        self.ws = None
        self._receive_task: Optional[asyncio.Task] = None

    def is_connected(self) -> bool:
        """
        Check if the WebSocket connection is open.
        """
        return self.state == ConnectionState.CONNECTED and self.ws is not None

    def _headers(self) -> dict:
        headers = {"OpenAI-Beta": settings.REALTIME_BETA_HEADER}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def connect(self, model: Optional[str] = None) -> bool:
        """
        Establish a WebSocket connection to the Realtime API endpoint.

        Raises:
            AlreadyConnectedError: If a connection is open or being opened.
            TransportError: If the socket cannot be opened or the attempt was
                aborted by ``disconnect``.
        """
        if not self.state.can_connect:
            raise AlreadyConnectedError("Already connected")

        connection_url = f"{self.url}?model={model or self.model}"
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to Realtime API at {connection_url}")

        try:
            ws = await websockets.connect(connection_url, additional_headers=self._headers())
        except Exception as e:
            logger.error(f"Failed to connect to Realtime API: {e}")
            if self.state == ConnectionState.CONNECTING:
                self._set_state(ConnectionState.FAILED)
            raise TransportError(f"Failed to connect: {e}") from e

        if self.state != ConnectionState.CONNECTING:
            await ws.close()
            raise TransportError("Connection attempt aborted")

        self.ws = ws
        self._set_state(ConnectionState.CONNECTED)
        self._receive_task = asyncio.create_task(self._receive_messages(ws))
        logger.keyinfo(f"Connected to {self.url}")
        return True

    async def _write(self, message: str) -> None:
        if self.ws is None:
            raise NotConnectedError("RealtimeAPI is not connected")
        await self.ws.send(message)

    async def _receive_messages(self, ws) -> None:
        """
        Listen for incoming WebSocket messages until the socket closes.
        """
        error = False
        try:
            async for message in ws:
                self._handle_message(message)
        except websockets.ConnectionClosedError as e:
            logger.warning(f"WebSocket connection closed: {e}")
            error = True
        except Exception as e:
            logger.error(f"Error in WebSocket receive loop: {e}", exc_info=True)
            error = True

        if self.ws is ws:
            # Dropped by the peer rather than by disconnect().
            self.ws = None
            self._receive_task = None
            self._set_state(ConnectionState.FAILED if error else ConnectionState.CLOSED)
            self.dispatch("close", {"error": error})

    async def disconnect(self) -> bool:
        """
        Gracefully close the WebSocket connection. Safe to call repeatedly.
        """
        if self.state in (ConnectionState.NEW, ConnectionState.CLOSED) and self.ws is None:
            return True

        ws, self.ws = self.ws, None
        task, self._receive_task = self._receive_task, None
        self._set_state(ConnectionState.CLOSING)
        if ws is not None:
            try:
                await ws.close()
                logger.keyinfo(f"Disconnected from Realtime API at {self.url}")
            except Exception as e:
                logger.error(f"Error during WebSocket disconnect: {e}", exc_info=True)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._set_state(ConnectionState.CLOSED)
        return True
