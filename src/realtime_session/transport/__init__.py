from .base import RealtimeTransport
from .websocket import RealtimeAPI
from .webrtc import RealtimeWebRTC

__all__ = [
    "RealtimeTransport",
    "RealtimeAPI",
    "RealtimeWebRTC",
]
