from enum import Enum


class TransportType(Enum):
    """Wire transports supported by the realtime client"""

    WEBSOCKET = "websocket"  # Persistent duplex socket, events as text frames
    WEBRTC = "webrtc"  # Peer connection, events over the "oai-events" data channel

    def __str__(self) -> str:
        """Return the string value for easy comparison"""
        return self.value

    @classmethod
    def from_string(cls, value: str) -> "TransportType":
        """Create TransportType from string with validation"""
        for transport in cls:
            if transport.value == value:
                return transport
        raise ValueError(
            f"Invalid transport: {value}. Valid options: {[t.value for t in cls]}"
        )


class ConnectionState(Enum):
    """Lifecycle of a transport connection"""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def can_connect(self) -> bool:
        """Check if a new connection attempt may start from this state"""
        return self in [ConnectionState.NEW, ConnectionState.CLOSED, ConnectionState.FAILED]


class ItemStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in [ItemStatus.COMPLETED, ItemStatus.INCOMPLETE]
