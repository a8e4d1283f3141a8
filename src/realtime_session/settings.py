"""
src/realtime_session/settings.py
================================
Central place for every environment variable and constant used by the
realtime session client.
"""

from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ------------------------------------------------------------------------------
# Credentials
# ------------------------------------------------------------------------------
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")

# ------------------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------------------
REALTIME_WS_URL: str = os.getenv("REALTIME_WS_URL", "wss://api.openai.com/v1/realtime")
REALTIME_WEBRTC_URL: str = os.getenv("REALTIME_WEBRTC_URL", "https://api.openai.com/v1/realtime")
REALTIME_MODEL: str = os.getenv("REALTIME_MODEL", "gpt-4o-realtime-preview-2024-10-01")
REALTIME_BETA_HEADER: str = "realtime=v1"

# ------------------------------------------------------------------------------
# WebRTC negotiation
# ------------------------------------------------------------------------------
WEBRTC_CONNECTION_TIMEOUT_S: float = float(os.getenv("WEBRTC_CONNECTION_TIMEOUT_S", "10"))
WEBRTC_STUN_URL: str = os.getenv("WEBRTC_STUN_URL", "stun:stun.l.google.com:19302")
WEBRTC_DATA_CHANNEL_LABEL: str = "oai-events"

VALID_AUDIO_FORMATS: List[str] = ["pcm16", "g711_ulaw", "g711_alaw"]
VALID_VOICES: List[str] = ["alloy", "ash", "ballad", "coral", "echo", "sage", "shimmer", "verse"]

# ------------------------------------------------------------------------------
# Audio
# ------------------------------------------------------------------------------
# Sample rate of pcm16 audio exchanged with the realtime API
REALTIME_SAMPLE_RATE: int = int(os.getenv("REALTIME_SAMPLE_RATE", "24000"))

MICROPHONE_CONSTRAINTS = {
    "channel_count": 1,
    "sample_rate": 16000,
    "echo_cancellation": True,
    "noise_suppression": True,
}

# ffmpeg device / format pairs used by aiortc.contrib.media
MIC_DEVICE: str = os.getenv("MIC_DEVICE", "default")
MIC_FORMAT: str = os.getenv("MIC_FORMAT", "pulse")
PLAYBACK_DEVICE: str = os.getenv("PLAYBACK_DEVICE", "")
PLAYBACK_FORMAT: str = os.getenv("PLAYBACK_FORMAT", "pulse")
