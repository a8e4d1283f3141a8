"""
Realtime Session Package

Provides classes and utilities for:
- Realtime audio and text sessions over WebSocket or WebRTC
- Ephemeral credential resolution and SDP negotiation
- Conversation tracking from streamed server events
- Session configuration and tool calling
- Event dispatching and handling
"""

from .client import RealtimeClient, RuntimeCapabilities
from .conversation import RealtimeConversation
from .enums import ConnectionState, ItemStatus, TransportType
from .errors import (
    AlreadyConnectedError,
    ConfigurationError,
    ConnectionTimeoutError,
    ConversationError,
    CredentialError,
    MediaError,
    NegotiationError,
    NotConnectedError,
    RealtimeError,
    TransportError,
)
from .event_handler import EventPattern, RealtimeEventHandler
from .session import SessionConfig
from .tools import ToolRegistry, ToolResult
from .transport import RealtimeAPI, RealtimeTransport, RealtimeWebRTC
from .utils import (
    array_buffer_to_base64,
    base64_to_int16,
    float_to_16bit_pcm,
    merge_int16_arrays,
)

__all__ = [
    "RealtimeClient",
    "RuntimeCapabilities",
    "RealtimeAPI",
    "RealtimeWebRTC",
    "RealtimeTransport",
    "RealtimeConversation",
    "RealtimeEventHandler",
    "EventPattern",
    "SessionConfig",
    "ToolRegistry",
    "ToolResult",
    "TransportType",
    "ConnectionState",
    "ItemStatus",
    "RealtimeError",
    "ConfigurationError",
    "CredentialError",
    "NegotiationError",
    "ConnectionTimeoutError",
    "MediaError",
    "TransportError",
    "NotConnectedError",
    "AlreadyConnectedError",
    "ConversationError",
    "float_to_16bit_pcm",
    "base64_to_int16",
    "array_buffer_to_base64",
    "merge_int16_arrays",
]
