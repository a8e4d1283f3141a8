# client.py orchestrates the transport and the RealtimeConversation store
# and handles connection, session configuration, tool calling and waiters.

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from src.realtime_session.conversation import RealtimeConversation
from src.realtime_session.credentials import fetch_ephemeral_key
from src.realtime_session.enums import TransportType
from src.realtime_session.errors import (
    AlreadyConnectedError,
    ConfigurationError,
    ConversationError,
    CredentialError,
    NotConnectedError,
    RealtimeError,
)
from src.realtime_session.event_handler import Handler, RealtimeEventHandler
from src.realtime_session.session import SessionConfig
from src.realtime_session.tools import ToolHandler, ToolRegistry
from src.realtime_session.transport import RealtimeAPI, RealtimeTransport, RealtimeWebRTC
from src.realtime_session.utils import AudioLike, array_buffer_to_base64, to_int16_array
from utils.ml_logging import get_logger
from utils.trace_context import TraceContext

logger = get_logger("realtime_session.client")


@dataclass(frozen=True)
class RuntimeCapabilities:
    """
    What the hosting runtime allows.

    Attributes:
        browser_like: Code runs where credentials can be read by end users, so
            long-lived API keys must not be used without an explicit opt-in.
        webrtc_supported: A peer-connection stack is available.
    """

    browser_like: bool = False
    webrtc_supported: bool = True


class RealtimeClient:
    """
    Client orchestrator that manages the transport, conversation tracking,
    session configuration, tools and user interactions.
    """

    def __init__(
        self,
        transport: Union[str, TransportType] = TransportType.WEBSOCKET,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dangerously_allow_api_key_in_browser: bool = False,
        ephemeral_key: Optional[str] = None,
        fetch_ephemeral_key_url: Optional[str] = None,
        capabilities: Optional[RuntimeCapabilities] = None,
        instructions: Optional[str] = None,
        session_config_path: Optional[str] = None,
        realtime: Optional[RealtimeTransport] = None,
        transport_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            self.transport_type = (
                transport if isinstance(transport, TransportType) else TransportType.from_string(transport)
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        self.capabilities = capabilities or RuntimeCapabilities()

        if self.capabilities.browser_like:
            if self.transport_type == TransportType.WEBRTC and not ephemeral_key and not fetch_ephemeral_key_url:
                raise ConfigurationError(
                    "Either ephemeral_key or fetch_ephemeral_key_url is required for WebRTC transport in browser environments"
                )
            if self.transport_type == TransportType.WEBSOCKET and api_key and not dangerously_allow_api_key_in_browser:
                raise ConfigurationError(
                    "Cannot use standard API key in browser without dangerously_allow_api_key_in_browser set to True"
                )
        if self.transport_type == TransportType.WEBRTC and not self.capabilities.webrtc_supported:
            raise ConfigurationError("WebRTC transport is not supported in this runtime")

        self.ephemeral_key = ephemeral_key
        self.fetch_ephemeral_key_url = fetch_ephemeral_key_url

        if realtime is not None:
            self.realtime = realtime
        elif self.transport_type == TransportType.WEBRTC:
            self.realtime = RealtimeWebRTC(base_url=url, model=model, **(transport_options or {}))
        else:
            self.realtime = RealtimeAPI(url=url, api_key=api_key, model=model, **(transport_options or {}))

        self.default_session_config = SessionConfig()
        if instructions is not None:
            self.default_session_config.instructions = instructions
        if session_config_path:
            self.default_session_config = SessionConfig.from_yaml(
                session_config_path, base=self.default_session_config
            )

        self.events = RealtimeEventHandler()
        self.conversation = RealtimeConversation()
        self._background_tasks = set()
        self._reset_config()
        self._add_api_event_handlers()

    # ---------------------------
    # Event bus delegation
    # ---------------------------

    def on(self, event_name: str, handler: Handler) -> None:
        self.events.on(event_name, handler)

    def off(self, event_name: str, handler: Optional[Handler] = None) -> None:
        self.events.off(event_name, handler)

    def clear_event_handlers(self) -> None:
        self.events.clear_event_handlers()

    def dispatch(self, event_name: str, event: Any = None) -> None:
        self.events.dispatch(event_name, event)

    async def wait_for_next(self, event_name: str, timeout: Optional[float] = None) -> Any:
        return await self.events.wait_for_next(event_name, timeout=timeout)

    # ---------------------------
    # Setup
    # ---------------------------

    def _reset_config(self) -> None:
        self.session_created = False
        self.tools = ToolRegistry()
        self.session_config = self.default_session_config.copy()

    def _add_api_event_handlers(self) -> None:
        self.realtime.on("client.*", self._log_client_event)
        self.realtime.on("server.*", self._log_server_event)
        self.realtime.on("error", self._on_transport_error)
        self.realtime.on("close", self._on_transport_close)
        self.realtime.on("server.session.created", self._on_session_created)

        self.realtime.on("server.response.created", self._process_event)
        self.realtime.on("server.response.output_item.added", self._process_event)
        self.realtime.on("server.response.content_part.added", self._process_event)
        self.realtime.on("server.input_audio_buffer.speech_started", self._on_speech_started)
        self.realtime.on("server.input_audio_buffer.speech_stopped", self._process_event_with_dispatch)

        self.realtime.on("server.conversation.item.created", self._on_item_created)
        self.realtime.on("server.conversation.item.truncated", self._process_event_with_dispatch)
        self.realtime.on("server.conversation.item.deleted", self._process_event_with_dispatch)
        self.realtime.on(
            "server.conversation.item.input_audio_transcription.completed",
            self._on_input_audio_transcription_completed,
        )
        self.realtime.on("server.response.audio_transcript.delta", self._process_event_with_dispatch)
        self.realtime.on("server.response.audio.delta", self._process_event_with_dispatch)
        self.realtime.on("server.response.text.delta", self._process_event_with_dispatch)
        self.realtime.on("server.response.function_call_arguments.delta", self._process_event_with_dispatch)
        self.realtime.on("server.response.output_item.done", self._on_output_item_done)

    # ---------------------------
    # Transport event handlers
    # ---------------------------

    def _log_event(self, source: str, event: dict) -> None:
        realtime_event = {
            "time": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "event": event,
        }
        self.dispatch("realtime.event", realtime_event)

    def _log_client_event(self, event: dict) -> None:
        self._log_event("client", event)

    def _log_server_event(self, event: dict) -> None:
        self._log_event("server", event)

    def _on_transport_error(self, event: dict) -> None:
        self.dispatch("error", event)

    def _on_transport_close(self, event: dict) -> None:
        logger.warning(f"Realtime connection closed: {event}")
        self.session_created = False
        self.dispatch("close", event)

    def _on_session_created(self, event: dict) -> None:
        self.session_created = True

    def _process_event(self, event: dict) -> tuple:
        return self.conversation.process_event(event)

    def _process_event_with_dispatch(self, event: dict) -> tuple:
        item, delta = self._process_event(event)
        if item:
            self.dispatch("conversation.updated", {"item": item, "delta": delta})
        return item, delta

    def _on_speech_started(self, event: dict) -> None:
        self._process_event(event)
        self.dispatch("conversation.interrupted", event)

    def _on_item_created(self, event: dict) -> None:
        item_id = (event.get("item") or {}).get("id")
        if self.conversation.get_item(item_id):
            logger.debug(f"Ignoring repeated creation of item '{item_id}'")
            return
        item, _ = self._process_event_with_dispatch(event)
        if not item:
            return
        self.dispatch("conversation.item.appended", {"item": item})
        if item.get("status") == "completed":
            self.dispatch("conversation.item.completed", {"item": item})

    def _on_input_audio_transcription_completed(self, event: dict) -> None:
        item, delta = self._process_event_with_dispatch(event)
        self.dispatch(
            "conversation.item.input_audio_transcription.completed",
            {"item": item, "delta": delta},
        )

    def _on_output_item_done(self, event: dict) -> None:
        item, delta = self._process_event_with_dispatch(event)
        if not item or not delta:
            return
        if delta.get("status") == "completed":
            self.dispatch("conversation.item.completed", {"item": item})
        if delta.get("tool"):
            self._spawn(self._call_tool(delta["tool"]))

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _call_tool(self, tool: dict) -> None:
        logger.keyinfo(f"Calling tool {tool['name']} with arguments: {tool['arguments']}")
        async with TraceContext(f"realtime.tool.{tool['name']}", transport=str(self.transport_type)):
            result = await self.tools.invoke(tool)

        if not result.ok:
            self.dispatch(
                "conversation.tool_call.error",
                {"error": result.error, "tool": tool.get("name")},
            )
        try:
            await self.realtime.send("conversation.item.create", {"item": result.to_output_item()})
            await self.create_response()
        except RealtimeError as e:
            logger.error(f"Could not report result of tool '{tool['name']}': {e}")

    # ---------------------------
    # Connection
    # ---------------------------

    def is_connected(self) -> bool:
        return self.realtime.is_connected()

    async def reset(self) -> bool:
        """
        Disconnect, drop every handler and restore the initial configuration.
        """
        await self.disconnect()
        self.clear_event_handlers()
        self.realtime.clear_event_handlers()
        self._reset_config()
        self._add_api_event_handlers()
        return True

    async def connect(self, ephemeral_key: Optional[str] = None) -> bool:
        """
        Connect the transport and send the current session configuration.

        Args:
            ephemeral_key (Optional[str]): Credential for the WebRTC transport; stored for reuse.

        Raises:
            AlreadyConnectedError: If already connected.
            CredentialError: If the WebRTC credential cannot be resolved.
        """
        if self.is_connected():
            raise AlreadyConnectedError("Already connected, use disconnect() first")

        if ephemeral_key:
            self.ephemeral_key = ephemeral_key

        async with TraceContext("realtime.connect", transport=str(self.transport_type)):
            if self.transport_type == TransportType.WEBRTC:
                if not self.ephemeral_key and self.fetch_ephemeral_key_url:
                    self.ephemeral_key = await fetch_ephemeral_key(self.fetch_ephemeral_key_url)
                if not self.ephemeral_key:
                    raise CredentialError("Ephemeral key is required for WebRTC transport")
                await self.realtime.connect(
                    ephemeral_key=self.ephemeral_key,
                    session_config=self.session_config.to_dict(),
                )
            else:
                await self.realtime.connect()

        await self.update_session()
        return True

    async def wait_for_session_created(self) -> bool:
        """
        Wait until the server has confirmed the session.

        Raises:
            NotConnectedError: If not connected, or if ``disconnect`` is called while waiting.
        """
        if not self.is_connected():
            raise NotConnectedError("Not connected, use connect() first")
        if not self.session_created:
            await self.realtime.wait_for_next("server.session.created")
        return True

    async def disconnect(self) -> None:
        """
        Disconnect the transport and clear the conversation. Safe to call repeatedly.

        Pending waiters raise ``NotConnectedError``.
        """
        self.session_created = False
        error = NotConnectedError("Client disconnected")
        self.realtime.events.fail_waiters(error)
        self.events.fail_waiters(error)
        await self.realtime.disconnect()
        self.conversation.clear()

    # ---------------------------
    # Session & tools
    # ---------------------------

    def get_turn_detection_type(self) -> Optional[str]:
        return (self.session_config.turn_detection or {}).get("type")

    def _session_payload(self) -> Dict[str, Any]:
        return self.session_config.to_payload(self.tools.definitions())

    async def update_session(self, **kwargs: Any) -> bool:
        """
        Merge the given fields into the session configuration and, when
        connected, send the full configuration to the peer.

        Fields that are not passed are left as they are; passing ``None`` sets
        the field to ``None``.
        """
        self.session_config.merge(**kwargs)
        if self.is_connected():
            await self.realtime.send("session.update", {"session": self._session_payload()})
        return True

    async def add_tool(self, definition: dict, handler: ToolHandler) -> dict:
        tool = self.tools.add(definition, handler)
        await self.update_session()
        return tool

    async def remove_tool(self, name: str) -> bool:
        self.tools.remove(name)
        await self.update_session()
        return True

    # ---------------------------
    # Conversation operations
    # ---------------------------

    async def send(self, event_name: str, data: Optional[dict] = None) -> bool:
        return await self.realtime.send(event_name, data)

    async def delete_item(self, item_id: str) -> bool:
        await self.realtime.send("conversation.item.delete", {"item_id": item_id})
        return True

    async def send_user_message_content(self, content: List[dict]) -> bool:
        if content:
            prepared = []
            for c in content:
                c = dict(c)
                if c.get("type") == "input_audio" and not isinstance(c.get("audio"), (str, type(None))):
                    c["audio"] = array_buffer_to_base64(to_int16_array(c["audio"]))
                prepared.append(c)
            await self.realtime.send(
                "conversation.item.create",
                {
                    "item": {
                        "type": "message",
                        "role": "user",
                        "content": prepared,
                    }
                },
            )
        await self.create_response()
        return True

    async def append_input_audio(self, audio: AudioLike) -> bool:
        samples = to_int16_array(audio)
        if samples.size > 0:
            await self.realtime.send(
                "input_audio_buffer.append",
                {"audio": array_buffer_to_base64(samples)},
            )
            self.conversation.append_input_audio(samples)
        return True

    async def create_response(self) -> bool:
        if self.get_turn_detection_type() is None and self.conversation.input_audio_buffer.size > 0:
            await self.realtime.send("input_audio_buffer.commit")
            self.conversation.commit_input_audio()
        await self.realtime.send("response.create")
        return True

    async def cancel_response(self, item_id: Optional[str] = None, sample_count: int = 0) -> Dict[str, Any]:
        """
        Cancel the in-flight response. With ``item_id``, also truncate that
        assistant item's audio at ``sample_count`` played samples.

        Returns:
            dict: ``{"item": item}`` for the truncated item, or ``{"item": None}``.
        """
        if not item_id:
            await self.realtime.send("response.cancel")
            return {"item": None}

        item = self.conversation.get_item(item_id)
        if not item:
            raise ConversationError(f'Could not find item "{item_id}"')
        if item.get("type") != "message" or item.get("role") != "assistant":
            raise ConversationError("Can only cancel_response messages with role 'assistant'")

        await self.realtime.send("response.cancel")
        audio_index = next(
            (i for i, c in enumerate(item.get("content") or []) if c.get("type") == "audio"),
            -1,
        )
        if audio_index == -1:
            raise ConversationError("Could not find audio on item to cancel")
        await self.realtime.send(
            "conversation.item.truncate",
            {
                "item_id": item_id,
                "content_index": audio_index,
                "audio_end_ms": (sample_count * 1000) // self.conversation.frequency,
            },
        )
        return {"item": item}

    # ---------------------------
    # Waiters
    # ---------------------------

    async def wait_for_next_item(self, timeout: Optional[float] = None) -> dict:
        event = await self.wait_for_next("conversation.item.appended", timeout=timeout)
        return {"item": event["item"]}

    async def wait_for_next_completed_item(self, timeout: Optional[float] = None) -> dict:
        event = await self.wait_for_next("conversation.item.completed", timeout=timeout)
        return {"item": event["item"]}
