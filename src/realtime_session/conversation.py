"""
RealtimeConversation folds the ordered stream of server events into a list of
conversation items, tracking streaming text, transcripts, audio and function
call arguments, plus the input audio captured for each user turn.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from src.realtime_session import settings
from src.realtime_session.enums import ItemStatus
from src.realtime_session.errors import ConversationError
from src.realtime_session.utils import (
    AudioLike,
    base64_to_int16,
    empty_audio,
    merge_int16_arrays,
    to_int16_array,
)

logger = logging.getLogger(__name__)

Item = Dict[str, Any]
Delta = Dict[str, Any]
ProcessResult = Tuple[Optional[Item], Optional[Delta]]

TERMINAL_STATUSES = {status.value for status in ItemStatus if status.is_terminal}
TEXT_PART_TYPES = ("text", "input_text")
AUDIO_PART_TYPES = ("audio", "input_audio", "transcript")


def format_item(item: Item) -> Dict[str, Any]:
    """
    Project an item's content parts and call fields into its display view.

    Args:
        item (Item): Conversation item.

    Returns:
        Dict[str, Any]: ``text``, ``transcript`` and ``audio`` for every item,
        plus ``tool`` for function calls and ``output`` for their outputs.
    """
    text = ""
    transcript = ""
    audio_chunks: List[np.ndarray] = []
    for part in item.get("content") or []:
        part_type = part.get("type")
        if part_type in TEXT_PART_TYPES:
            text += part.get("text") or ""
        elif part_type in AUDIO_PART_TYPES:
            transcript += part.get("transcript") or ""
            audio = part.get("audio")
            if isinstance(audio, np.ndarray) and audio.size:
                audio_chunks.append(audio)

    formatted: Dict[str, Any] = {
        "text": text,
        "transcript": transcript,
        "audio": np.concatenate(audio_chunks) if audio_chunks else empty_audio(),
    }
    if item.get("type") == "function_call":
        formatted["tool"] = {
            "type": "function",
            "name": item.get("name"),
            "call_id": item.get("call_id"),
            "arguments": item.get("arguments") or "",
        }
    elif item.get("type") == "function_call_output":
        formatted["output"] = item.get("output")
    return formatted


class RealtimeConversation:
    """
    In-memory, event-sourced store of conversation items and input audio.
    """

    default_frequency: int = settings.REALTIME_SAMPLE_RATE

    def __init__(self, frequency: Optional[int] = None) -> None:
        self.frequency = frequency or self.default_frequency
        self.clear()

    def clear(self) -> None:
        """
        Reset the conversation state, clearing all items, responses, and queued data.
        """
        self.item_lookup: Dict[str, Item] = {}
        self.items: List[Item] = []
        self.response_lookup: Dict[str, Dict[str, Any]] = {}
        self.responses: List[Dict[str, Any]] = []
        self.queued_speech_items: Dict[str, Dict[str, Any]] = {}
        self.queued_transcript_items: Dict[str, Dict[str, Any]] = {}
        self.queued_input_audio: Optional[np.ndarray] = None
        self.input_audio_buffer: np.ndarray = empty_audio()
        # Samples dropped from the front of the accumulator so far.
        self._input_audio_origin: int = 0

    # ---------------------------
    # Input audio accumulator
    # ---------------------------

    def append_input_audio(self, audio: AudioLike) -> np.ndarray:
        """
        Append captured microphone samples to the accumulator.

        Returns:
            np.ndarray: The appended samples as int16.
        """
        samples = to_int16_array(audio)
        self.input_audio_buffer = merge_int16_arrays(self.input_audio_buffer, samples)
        return samples

    def commit_input_audio(self) -> Optional[np.ndarray]:
        """
        Queue the whole accumulator for the next user item and empty it.
        Used when turns are ended by the client rather than by server VAD.
        """
        if not self.input_audio_buffer.size:
            return None
        committed = self.input_audio_buffer
        self.queue_input_audio(committed)
        self._input_audio_origin += committed.size
        self.input_audio_buffer = empty_audio()
        return committed

    def queue_input_audio(self, input_audio: AudioLike) -> None:
        """
        Store input audio temporarily for the next user item.
        """
        self.queued_input_audio = to_int16_array(input_audio)

    def _ms_to_samples(self, ms: int) -> int:
        return (int(ms) * self.frequency) // 1000

    def _buffer_index(self, ms: int) -> int:
        index = self._ms_to_samples(ms) - self._input_audio_origin
        return min(max(index, 0), self.input_audio_buffer.size)

    # ---------------------------
    # Queries
    # ---------------------------

    def process_event(self, event: Dict[str, Any]) -> ProcessResult:
        """
        Process a realtime server event and update conversation state.

        Args:
            event (Dict[str, Any]): Incoming event containing type and data.

        Returns:
            ProcessResult: The affected item (or None) and what changed (or None).

        Raises:
            ConversationError: If no processor exists for the event type.
        """
        event_processor = self.EventProcessors.get(event.get("type"))
        if not event_processor:
            raise ConversationError(f"Missing conversation event processor for {event.get('type')}")
        return event_processor(self, event)

    def get_item(self, item_id: str) -> Optional[Item]:
        return self.item_lookup.get(item_id)

    def get_items(self) -> List[Item]:
        """
        Get a list of all conversation items, in insertion order.
        """
        return self.items[:]

    # ---------------------------
    # Helpers
    # ---------------------------

    @staticmethod
    def _refresh(item: Item) -> None:
        formatted = item.setdefault("formatted", {})
        formatted.clear()
        formatted.update(format_item(item))

    @staticmethod
    def _normalize_part(part: Dict[str, Any]) -> Dict[str, Any]:
        part_type = part.get("type")
        if part_type in TEXT_PART_TYPES:
            if part.get("text") is None:
                part["text"] = ""
        elif part_type in AUDIO_PART_TYPES:
            audio = part.get("audio")
            if isinstance(audio, str):
                part["audio"] = base64_to_int16(audio)
            elif audio is None:
                part["audio"] = empty_audio()
            else:
                part["audio"] = to_int16_array(audio)
        return part

    def _ensure_part(self, item: Item, content_index: int, part_type: str) -> Dict[str, Any]:
        content = item.setdefault("content", [])
        while len(content) <= content_index:
            content.append(self._normalize_part({"type": part_type}))
        return self._normalize_part(content[content_index])

    def _lookup_for_delta(self, event: Dict[str, Any]) -> Optional[Item]:
        item_id = event.get("item_id")
        item = self.item_lookup.get(item_id)
        if not item:
            logger.warning(f"Item '{item_id}' not found for {event.get('type')}, skipping.")
        return item

    def _attach_input_audio(self, item: Item, audio: np.ndarray) -> None:
        content = item.setdefault("content", [])
        for part in content:
            if part.get("type") == "input_audio":
                part["audio"] = audio
                return
        content.append({"type": "input_audio", "audio": audio, "transcript": None})

    # ---------------------------
    # Event Processors
    # ---------------------------

    def _process_item_created(self, event: Dict[str, Any]) -> ProcessResult:
        new_item = copy.deepcopy(event["item"])
        item_id = new_item["id"]

        existing = self.item_lookup.get(item_id)
        if existing:
            logger.debug(f"Item '{item_id}' already exists, keeping original.")
            return existing, None

        content = new_item.setdefault("content", [])
        for part in content:
            self._normalize_part(part)

        # Status follows the item type; the server value wins when present.
        if not new_item.get("status"):
            if new_item.get("type") == "message" and new_item.get("role") == "user":
                new_item["status"] = ItemStatus.COMPLETED.value
            elif new_item.get("type") == "function_call_output":
                new_item["status"] = ItemStatus.COMPLETED.value
            else:
                new_item["status"] = ItemStatus.IN_PROGRESS.value
        if new_item.get("type") == "function_call":
            new_item.setdefault("arguments", "")

        speech = self.queued_speech_items.pop(item_id, None)
        if speech and speech.get("audio") is not None:
            self._attach_input_audio(new_item, speech["audio"])
        elif new_item.get("role") == "user" and self.queued_input_audio is not None:
            self._attach_input_audio(new_item, self.queued_input_audio)
            self.queued_input_audio = None

        queued_transcript = self.queued_transcript_items.pop(item_id, None)
        if queued_transcript:
            part = self._ensure_part(new_item, queued_transcript["content_index"], "input_audio")
            part["transcript"] = queued_transcript["transcript"]

        self._refresh(new_item)

        previous_item_id = event.get("previous_item_id")
        self.item_lookup[item_id] = new_item
        if previous_item_id and previous_item_id in self.item_lookup:
            position = self.items.index(self.item_lookup[previous_item_id]) + 1
            self.items.insert(position, new_item)
        else:
            self.items.append(new_item)

        return new_item, None

    def _process_item_truncated(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._lookup_for_delta(event)
        if not item:
            return None, None

        content_index = event.get("content_index", 0)
        end_index = self._ms_to_samples(event["audio_end_ms"])
        content = item.get("content") or []
        if content_index < len(content):
            part = self._normalize_part(content[content_index])
            if "audio" in part:
                part["audio"] = part["audio"][:end_index]
            part["transcript"] = ""
        self._refresh(item)
        return item, None

    def _process_item_deleted(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event["item_id"]
        item = self.item_lookup.pop(item_id, None)
        if not item:
            logger.warning(f"Item '{item_id}' not found for deletion, skipping.")
            return None, None

        self.items.remove(item)
        return item, None

    def _process_input_audio_transcription_completed(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event["item_id"]
        content_index = event.get("content_index", 0)
        transcript = event.get("transcript") or " "

        item = self.item_lookup.get(item_id)
        if not item:
            self.queued_transcript_items[item_id] = {
                "transcript": transcript,
                "content_index": content_index,
            }
            return None, None

        part = self._ensure_part(item, content_index, "input_audio")
        part["transcript"] = transcript
        self._refresh(item)
        return item, {"transcript": transcript, "content_index": content_index}

    def _process_speech_started(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event["item_id"]
        audio_start_ms = event.get("audio_start_ms", 0)

        # A new turn starts: drop samples that belong to earlier turns.
        start_index = self._buffer_index(audio_start_ms)
        self.input_audio_buffer = self.input_audio_buffer[start_index:]
        self._input_audio_origin += start_index

        self.queued_speech_items[item_id] = {"audio_start_ms": audio_start_ms}
        return None, None

    def _process_speech_stopped(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event["item_id"]
        audio_end_ms = event.get("audio_end_ms", 0)

        speech = self.queued_speech_items.setdefault(item_id, {})
        speech["audio_end_ms"] = audio_end_ms
        start_index = self._buffer_index(speech.get("audio_start_ms", 0))
        end_index = self._buffer_index(audio_end_ms)
        speech["audio"] = self.input_audio_buffer[start_index:end_index].copy()

        item = self.item_lookup.get(item_id)
        if item:
            self.queued_speech_items.pop(item_id, None)
            self._attach_input_audio(item, speech["audio"])
            self._refresh(item)
            return item, {"audio": speech["audio"]}
        return None, None

    def _process_response_created(self, event: Dict[str, Any]) -> ProcessResult:
        response = copy.deepcopy(event["response"])
        response.setdefault("output", [])

        if response["id"] not in self.response_lookup:
            self.response_lookup[response["id"]] = response
            self.responses.append(response)

        return None, None

    def _process_output_item_added(self, event: Dict[str, Any]) -> ProcessResult:
        response_id = event.get("response_id")
        item = event.get("item") or {}

        response = self.response_lookup.get(response_id)
        if not response:
            logger.warning(f"Response '{response_id}' not found for output item addition, skipping.")
            return None, None

        if item.get("id") and item["id"] not in response["output"]:
            response["output"].append(item["id"])
        return None, None

    def _process_content_part_added(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._lookup_for_delta(event)
        if not item:
            return None, None

        part = self._normalize_part(copy.deepcopy(event["part"]))
        content = item.setdefault("content", [])
        content_index = event.get("content_index", len(content))
        if content_index < len(content):
            existing = content[content_index]
            for key, value in part.items():
                existing.setdefault(key, value)
        else:
            while len(content) < content_index:
                content.append(self._normalize_part({"type": part.get("type")}))
            content.append(part)

        self._refresh(item)
        return item, None

    def _process_audio_transcript_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._lookup_for_delta(event)
        if not item:
            return None, None

        content_index = event.get("content_index", 0)
        delta = event["delta"]
        part = self._ensure_part(item, content_index, "audio")
        part["transcript"] = (part.get("transcript") or "") + delta
        self._refresh(item)
        return item, {"transcript": delta, "content_index": content_index}

    def _process_audio_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._lookup_for_delta(event)
        if not item:
            return None, None

        content_index = event.get("content_index", 0)
        samples = base64_to_int16(event["delta"])
        part = self._ensure_part(item, content_index, "audio")
        part["audio"] = merge_int16_arrays(part["audio"], samples)
        self._refresh(item)
        return item, {"audio": samples, "content_index": content_index}

    def _process_text_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._lookup_for_delta(event)
        if not item:
            return None, None

        content_index = event.get("content_index", 0)
        delta = event["delta"]
        part = self._ensure_part(item, content_index, "text")
        part["text"] = (part.get("text") or "") + delta
        self._refresh(item)
        return item, {"text": delta, "content_index": content_index}

    def _process_function_call_arguments_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._lookup_for_delta(event)
        if not item:
            return None, None

        delta = event["delta"]
        item["arguments"] = (item.get("arguments") or "") + delta
        self._refresh(item)
        return item, {"arguments": delta}

    def _process_output_item_done(self, event: Dict[str, Any]) -> ProcessResult:
        done_item = event.get("item")
        if not done_item:
            logger.warning("Missing item in response output item done event, skipping.")
            return None, None

        found_item = self.item_lookup.get(done_item.get("id"))
        if not found_item:
            logger.warning(f"Item '{done_item.get('id')}' not found in output item done event, skipping.")
            return None, None

        if found_item.get("status") in TERMINAL_STATUSES:
            logger.debug(f"Item '{found_item['id']}' already finalized, ignoring repeated completion.")
            return found_item, None

        status = done_item.get("status") or ItemStatus.COMPLETED.value
        found_item["status"] = status
        if found_item.get("type") == "function_call":
            for key in ("name", "call_id", "arguments"):
                if not found_item.get(key) and done_item.get(key):
                    found_item[key] = done_item[key]
        self._refresh(found_item)

        delta: Delta = {"status": status}
        tool = found_item["formatted"].get("tool")
        if status == ItemStatus.COMPLETED.value and tool and tool["name"] and tool["arguments"]:
            delta["tool"] = dict(tool)
        return found_item, delta

    # Event dispatch table
    EventProcessors = {
        "conversation.item.created": _process_item_created,
        "conversation.item.truncated": _process_item_truncated,
        "conversation.item.deleted": _process_item_deleted,
        "conversation.item.input_audio_transcription.completed": _process_input_audio_transcription_completed,
        "input_audio_buffer.speech_started": _process_speech_started,
        "input_audio_buffer.speech_stopped": _process_speech_stopped,
        "response.created": _process_response_created,
        "response.output_item.added": _process_output_item_added,
        "response.output_item.done": _process_output_item_done,
        "response.content_part.added": _process_content_part_added,
        "response.audio_transcript.delta": _process_audio_transcript_delta,
        "response.audio.delta": _process_audio_delta,
        "response.text.delta": _process_text_delta,
        "response.function_call_arguments.delta": _process_function_call_arguments_delta,
    }
