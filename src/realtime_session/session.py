"""
Session configuration negotiated with the realtime API.

``SessionConfig.merge`` is a sparse update: fields that are not passed stay
untouched, fields passed as ``None`` are set to ``None``.
"""

import copy
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

from src.realtime_session.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    modalities: List[str] = field(default_factory=lambda: ["text", "audio"])
    instructions: str = ""
    voice: str = "verse"
    input_audio_format: str = "pcm16"
    output_audio_format: str = "pcm16"
    input_audio_transcription: Optional[Dict[str, Any]] = None
    turn_detection: Optional[Dict[str, Any]] = None
    tools: List[Dict[str, Any]] = field(default_factory=list)
    tool_choice: str = "auto"
    temperature: float = 0.8
    max_response_output_tokens: Any = 4096

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def merge(self, **updates: Any) -> "SessionConfig":
        """
        Apply only the given fields.

        Raises:
            ConfigurationError: If a field name is not part of the session config.
        """
        unknown = sorted(set(updates) - set(self.field_names()))
        if unknown:
            raise ConfigurationError(f"Unknown session field(s): {', '.join(unknown)}")
        for name, value in updates.items():
            setattr(self, name, copy.deepcopy(value))
        return self

    def copy(self) -> "SessionConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_payload(self, tool_definitions: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        Build the ``session`` body of a ``session.update`` event.

        Args:
            tool_definitions: Definitions of registered tools, appended after the
                configured ``tools``.
        """
        payload = self.to_dict()
        payload["tools"] = [
            {**definition, "type": "function"}
            for definition in list(self.tools) + list(tool_definitions or [])
        ]
        return payload

    @classmethod
    def from_yaml(cls, path: str, base: Optional["SessionConfig"] = None) -> "SessionConfig":
        """
        Load overrides from a YAML mapping on top of ``base`` (or the defaults).

        ``turn_detection`` is merged key by key when both sides are mappings.
        A file that is not a mapping is ignored with a warning.
        """
        config = base.copy() if base else cls()
        with open(path, "r", encoding="utf-8") as f:
            config_from_yaml = yaml.safe_load(f)

        if not isinstance(config_from_yaml, dict):
            logger.warning(f"Session config YAML is not a dict, ignoring: {path}")
            return config

        logger.info(f"Loading session config from {path}")
        overrides = dict(config_from_yaml)
        turn_detection = overrides.get("turn_detection")
        if isinstance(turn_detection, dict) and isinstance(config.turn_detection, dict):
            merged_turn_detection = dict(config.turn_detection)
            merged_turn_detection.update(turn_detection)
            overrides["turn_detection"] = merged_turn_detection
        return config.merge(**overrides)
