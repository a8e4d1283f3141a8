"""
Realtime WebRTC transport.

Negotiates a peer connection with a one-shot SDP offer/answer exchange, carries
events over the ``oai-events`` data channel and, when audio is a negotiated
modality, streams the microphone up and plays the first remote audio track.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

import aiohttp
from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from src.realtime_session import settings
from src.realtime_session.credentials import exchange_sdp_offer
from src.realtime_session.enums import ConnectionState
from src.realtime_session.errors import (
    AlreadyConnectedError,
    ConfigurationError,
    ConnectionTimeoutError,
    CredentialError,
    MediaError,
    NegotiationError,
    NotConnectedError,
    TransportError,
)
from src.realtime_session.transport.base import RealtimeTransport
from src.realtime_session.transport.media import MediaDevices
from utils.ml_logging import get_logger

logger = get_logger("realtime_session.transport.webrtc")

PeerConnectionFactory = Callable[[], Any]


def default_peer_connection_factory() -> RTCPeerConnection:
    return RTCPeerConnection(
        configuration=RTCConfiguration(iceServers=[RTCIceServer(urls=settings.WEBRTC_STUN_URL)])
    )


def validate_audio_config(session_config: Dict[str, Any]) -> None:
    """
    Check audio formats and voice before any media is acquired.

    Raises:
        ConfigurationError: On an unsupported format or voice.
    """
    input_format = session_config.get("input_audio_format") or "pcm16"
    output_format = session_config.get("output_audio_format") or "pcm16"
    voice = session_config.get("voice") or "verse"
    if input_format not in settings.VALID_AUDIO_FORMATS:
        raise ConfigurationError(f"Invalid input_audio_format: {input_format}")
    if output_format not in settings.VALID_AUDIO_FORMATS:
        raise ConfigurationError(f"Invalid output_audio_format: {output_format}")
    if voice not in settings.VALID_VOICES:
        raise ConfigurationError(f"Invalid voice: {voice}")


class RealtimeWebRTC(RealtimeTransport):
    """
    Peer-connection client for the Realtime API.
    """

    name = "webrtc"

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        peer_connection_factory: Optional[PeerConnectionFactory] = None,
        media_devices: Optional[MediaDevices] = None,
        connection_timeout: Optional[float] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__()
        self.base_url: str = base_url or settings.REALTIME_WEBRTC_URL
        self.model: str = model or settings.REALTIME_MODEL
        self.peer_connection_factory = peer_connection_factory or default_peer_connection_factory
        self.media_devices = media_devices
        self.connection_timeout: float = (
            connection_timeout if connection_timeout is not None else settings.WEBRTC_CONNECTION_TIMEOUT_S
        )
        self.http_session = http_session

        self.pc = None
        self.dc = None
        self.audio_stream = None
        self.audio_sink = None
        self._ready: Optional[asyncio.Event] = None
        self._background_tasks = set()

    def is_connected(self) -> bool:
        """
        True when the peer connection is connected and the data channel is open.
        """
        return (
            self.pc is not None
            and self.dc is not None
            and self.pc.connectionState == "connected"
            and self.dc.readyState == "open"
        )

    async def connect(
        self,
        ephemeral_key: Optional[str] = None,
        model: Optional[str] = None,
        session_config: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Negotiate the peer connection and wait until the data channel is open.

        Args:
            ephemeral_key (str): Short-lived bearer credential for the SDP exchange.
            model (Optional[str]): Model identifier passed to the endpoint.
            session_config (Optional[dict]): Current session configuration; audio
                is set up when ``"audio"`` is among its modalities.

        Raises:
            AlreadyConnectedError: If connected or connecting.
            CredentialError: If no ephemeral key is given.
            ConfigurationError: On invalid audio formats or voice.
            MediaError: If the microphone cannot be opened.
            NegotiationError: If the SDP exchange fails or the connection fails.
            ConnectionTimeoutError: If the connection is not ready in time.
            TransportError: If ``disconnect`` aborted the attempt.
        """
        if self.is_connected() or not self.state.can_connect:
            raise AlreadyConnectedError("Already connected")
        if not ephemeral_key:
            raise CredentialError("Ephemeral key is required for WebRTC transport")

        session_config = session_config or {}
        self._set_state(ConnectionState.CONNECTING)
        succeeded = False
        try:
            await self._negotiate(ephemeral_key, model or self.model, session_config)
            succeeded = True
        finally:
            if not succeeded:
                await self._release()
                if self.state == ConnectionState.CONNECTING:
                    self._set_state(ConnectionState.FAILED)

        self._set_state(ConnectionState.CONNECTED)
        logger.keyinfo("Connected to Realtime API via WebRTC")
        return True

    async def _negotiate(self, ephemeral_key: str, model: str, session_config: Dict[str, Any]) -> None:
        with_audio = "audio" in (session_config.get("modalities") or [])
        if with_audio:
            validate_audio_config(session_config)

        self._ready = asyncio.Event()
        pc = self.peer_connection_factory()
        self.pc = pc
        pc.on("connectionstatechange", self._on_connection_state_change)

        if with_audio:
            await self._setup_audio(pc)

        dc = pc.createDataChannel(settings.WEBRTC_DATA_CHANNEL_LABEL)
        self.dc = dc
        dc.on("open", self._on_channel_open)
        dc.on("message", self._handle_message)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        self._ensure_not_aborted()

        answer_sdp = await exchange_sdp_offer(
            self.base_url, model, ephemeral_key, pc.localDescription.sdp, session=self.http_session
        )
        self._ensure_not_aborted()
        await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))

        try:
            await asyncio.wait_for(self._wait_until_ready(), timeout=self.connection_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"WebRTC connection not ready after {self.connection_timeout}s")
            raise ConnectionTimeoutError("Connection timeout") from e

    async def _setup_audio(self, pc) -> None:
        media_devices = self.media_devices or MediaDevices()
        self.media_devices = media_devices
        try:
            self.audio_stream = await media_devices.get_user_media(dict(settings.MICROPHONE_CONSTRAINTS))
        except Exception as e:
            logger.warning(f"Failed to get microphone access: {e}")
            raise MediaError("Microphone access required for audio modality") from e

        for track in self.audio_stream.get_audio_tracks():
            pc.addTrack(track)
        pc.on("track", self._on_track)
        logger.info(f"Audio configured with constraints: {settings.MICROPHONE_CONSTRAINTS}")

    def _ensure_not_aborted(self) -> None:
        if self.state != ConnectionState.CONNECTING or self.pc is None:
            raise TransportError("Connection attempt aborted")

    async def _wait_until_ready(self) -> None:
        while not self.is_connected():
            self._ensure_not_aborted()
            if self.pc.connectionState in ("failed", "closed"):
                raise NegotiationError("Connection failed")
            self._ready.clear()
            await self._ready.wait()

    # ---------------------------
    # Peer connection callbacks
    # ---------------------------

    def _on_channel_open(self) -> None:
        if self._ready is not None:
            self._ready.set()

    def _on_connection_state_change(self) -> None:
        pc = self.pc
        if pc is None:
            return
        if self._ready is not None:
            self._ready.set()
        if self.state != ConnectionState.CONNECTED:
            return

        if pc.connectionState in ("failed", "disconnected"):
            self._spawn(self._handle_drop(error=True))
        elif pc.connectionState == "closed":
            self._spawn(self._handle_drop(error=False))

    def _on_track(self, track) -> None:
        if track.kind != "audio" or self.audio_sink is not None or self.media_devices is None:
            return
        self.audio_sink = self.media_devices.create_audio_sink()
        self.audio_sink.addTrack(track)
        self._spawn(self.audio_sink.start())
        logger.info("Remote audio track bound to playback")

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"WebRTC background task failed: {task.exception()}")

    async def _handle_drop(self, error: bool) -> None:
        if self.state != ConnectionState.CONNECTED:
            return
        self._set_state(ConnectionState.CLOSING)
        await self._release()
        self._set_state(ConnectionState.FAILED if error else ConnectionState.CLOSED)
        logger.warning(f"WebRTC connection dropped (error={error})")
        self.dispatch("close", {"error": error})

    # ---------------------------
    # Teardown
    # ---------------------------

    async def _release(self) -> None:
        """
        Stop media, close the data channel and the peer connection.
        """
        stream, self.audio_stream = self.audio_stream, None
        sink, self.audio_sink = self.audio_sink, None
        dc, self.dc = self.dc, None
        pc, self.pc = self.pc, None

        if stream is not None:
            for track in stream.get_tracks():
                track.stop()
        if sink is not None:
            try:
                await sink.stop()
            except Exception as e:
                logger.warning(f"Error stopping audio playback: {e}")
        if dc is not None:
            dc.close()
        if pc is not None:
            try:
                await pc.close()
            except Exception as e:
                logger.error(f"Error closing peer connection: {e}", exc_info=True)

    async def disconnect(self) -> bool:
        """
        Tear down media, data channel and peer connection. Safe to call repeatedly,
        including while ``connect`` is still in flight.
        """
        if self.state == ConnectionState.NEW and self.pc is None:
            return True
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._set_state(ConnectionState.CLOSING)
        if self._ready is not None:
            self._ready.set()
        await self._release()
        self._set_state(ConnectionState.CLOSED)
        return True

    async def _write(self, message: str) -> None:
        if self.dc is None:
            raise NotConnectedError("RealtimeWebRTC is not connected")
        self.dc.send(message)
