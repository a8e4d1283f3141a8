"""
Default microphone capture and speaker playback for the WebRTC transport,
backed by the ffmpeg devices exposed through ``aiortc.contrib.media``.
"""

from typing import Any, Dict, List, Optional

from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder

from src.realtime_session import settings
from utils.ml_logging import get_logger

logger = get_logger("realtime_session.transport.media")


class AudioInputStream:
    """
    Microphone stream returned by ``MediaDevices.get_user_media``.
    """

    def __init__(self, player: MediaPlayer) -> None:
        self.player = player

    def get_audio_tracks(self) -> List[Any]:
        return [self.player.audio] if self.player.audio is not None else []

    def get_tracks(self) -> List[Any]:
        return self.get_audio_tracks()


class MediaDevices:
    """
    Opens the microphone as a local track source and builds playback sinks for
    remote audio tracks.

    Args:
        mic_device: ffmpeg input device (e.g. ``"default"`` for PulseAudio).
        mic_format: ffmpeg input format (e.g. ``"pulse"``, ``"alsa"``, ``"avfoundation"``).
        playback_device: ffmpeg output device; remote audio is discarded when empty.
        playback_format: ffmpeg output format.

    Only ``channel_count`` and ``sample_rate`` from the capture constraints are
    applied. ``echo_cancellation`` and ``noise_suppression`` are not: the
    capture device (e.g. a PulseAudio echo-cancel source) has to provide them.
    """

    def __init__(
        self,
        mic_device: Optional[str] = None,
        mic_format: Optional[str] = None,
        playback_device: Optional[str] = None,
        playback_format: Optional[str] = None,
    ) -> None:
        self.mic_device = mic_device or settings.MIC_DEVICE
        self.mic_format = mic_format or settings.MIC_FORMAT
        self.playback_device = playback_device if playback_device is not None else settings.PLAYBACK_DEVICE
        self.playback_format = playback_format or settings.PLAYBACK_FORMAT

    async def get_user_media(self, constraints: Dict[str, Any]) -> AudioInputStream:
        options = {
            "channels": str(constraints.get("channel_count", 1)),
            "sample_rate": str(constraints.get("sample_rate", 16000)),
        }
        if constraints.get("echo_cancellation") or constraints.get("noise_suppression"):
            logger.debug("Echo cancellation and noise suppression are applied by the capture device.")
        player = MediaPlayer(self.mic_device, format=self.mic_format, options=options)
        logger.info(f"Microphone opened: {self.mic_format}:{self.mic_device} {options}")
        return AudioInputStream(player)

    def create_audio_sink(self):
        if self.playback_device:
            return MediaRecorder(self.playback_device, format=self.playback_format)
        return MediaBlackhole()
