"""
Exception hierarchy for the realtime session client.

Configuration problems surface synchronously at the offending call, network
problems surface as a failed ``connect``. Nothing here is retried.
"""


class RealtimeError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(RealtimeError, ValueError):
    """Invalid transport/credential combination, tool registration or session field."""


class CredentialError(RealtimeError):
    """The ephemeral credential could not be resolved."""


class NegotiationError(RealtimeError):
    """The WebRTC offer/answer exchange or the peer connection failed."""


class ConnectionTimeoutError(NegotiationError):
    """The peer connection did not become ready in time."""


class MediaError(RealtimeError):
    """Microphone or playback device could not be acquired."""


class TransportError(RealtimeError):
    """A transport operation was attempted in the wrong state or with a bad payload."""


class NotConnectedError(TransportError):
    pass


class AlreadyConnectedError(TransportError):
    pass


class ConversationError(RealtimeError):
    """The conversation store was handed an event it cannot process."""
