"""
Tests for the RealtimeConversation store
========================================

Feeds ordered server events into the store and checks items, deltas and
formatted views, including input audio captured per user turn.
"""

import logging

import numpy as np
import pytest

from src.realtime_session.conversation import RealtimeConversation, format_item
from src.realtime_session.errors import ConversationError
from src.realtime_session.utils import array_buffer_to_base64


@pytest.fixture
def conversation():
    """Fixture providing a conversation at 24 kHz."""
    return RealtimeConversation(frequency=24000)


def assistant_item(item_id="msg_1", **extra):
    item = {"id": item_id, "type": "message", "role": "assistant", "content": []}
    item.update(extra)
    return {"type": "conversation.item.created", "item": item}


def user_item(item_id="msg_u", content=None, previous_item_id=None):
    event = {
        "type": "conversation.item.created",
        "item": {
            "id": item_id,
            "type": "message",
            "role": "user",
            "content": content if content is not None else [],
        },
    }
    if previous_item_id:
        event["previous_item_id"] = previous_item_id
    return event


class TestItemCreation:
    """Test item creation, ordering and status defaults."""

    def test_assistant_item_in_progress(self, conversation):
        item, delta = conversation.process_event(assistant_item())

        assert delta is None
        assert item["status"] == "in_progress"
        assert item["formatted"]["text"] == ""
        assert conversation.get_item("msg_1") is item

    def test_user_item_completed_with_text(self, conversation):
        item, _ = conversation.process_event(
            user_item(content=[{"type": "input_text", "text": "Hi there"}])
        )

        assert item["status"] == "completed"
        assert item["formatted"]["text"] == "Hi there"

    def test_server_status_kept(self, conversation):
        item, _ = conversation.process_event(assistant_item(status="completed"))
        assert item["status"] == "completed"

    def test_duplicate_creation_keeps_original(self, conversation):
        first, _ = conversation.process_event(assistant_item())
        second, _ = conversation.process_event(assistant_item())

        assert second is first
        assert len(conversation.get_items()) == 1

    def test_insert_after_previous_item(self, conversation):
        conversation.process_event(user_item("a"))
        conversation.process_event(user_item("c"))
        conversation.process_event(user_item("b", previous_item_id="a"))

        assert [i["id"] for i in conversation.get_items()] == ["a", "b", "c"]

    def test_unknown_previous_item_appends(self, conversation):
        conversation.process_event(user_item("a"))
        conversation.process_event(user_item("b", previous_item_id="missing"))

        assert [i["id"] for i in conversation.get_items()] == ["a", "b"]

    def test_get_items_returns_copy(self, conversation):
        conversation.process_event(user_item("a"))
        items = conversation.get_items()
        items.clear()
        assert len(conversation.get_items()) == 1

    def test_unknown_event_type_raises(self, conversation):
        with pytest.raises(ConversationError):
            conversation.process_event({"type": "response.unknown"})


class TestDeltas:
    """Test streaming deltas and completion."""

    def test_text_deltas_concatenate(self, conversation):
        conversation.process_event(assistant_item())

        _, delta = conversation.process_event(
            {"type": "response.text.delta", "item_id": "msg_1", "content_index": 0, "delta": "Hel"}
        )
        item, _ = conversation.process_event(
            {"type": "response.text.delta", "item_id": "msg_1", "content_index": 0, "delta": "lo"}
        )

        assert delta == {"text": "Hel", "content_index": 0}
        assert item["formatted"]["text"] == "Hello"

    def test_audio_and_transcript_deltas(self, conversation):
        conversation.process_event(assistant_item())
        samples = np.arange(100, dtype=np.int16)

        _, delta = conversation.process_event(
            {
                "type": "response.audio.delta",
                "item_id": "msg_1",
                "content_index": 0,
                "delta": array_buffer_to_base64(samples),
            }
        )
        item, _ = conversation.process_event(
            {"type": "response.audio_transcript.delta", "item_id": "msg_1", "content_index": 0, "delta": "Hey"}
        )

        np.testing.assert_array_equal(delta["audio"], samples)
        np.testing.assert_array_equal(item["formatted"]["audio"], samples)
        assert item["formatted"]["transcript"] == "Hey"

    def test_delta_for_unknown_item_is_skipped(self, conversation, caplog):
        with caplog.at_level(logging.WARNING):
            result = conversation.process_event(
                {"type": "response.text.delta", "item_id": "missing", "content_index": 0, "delta": "x"}
            )

        assert result == (None, None)
        assert "missing" in caplog.text

    def test_completion_is_idempotent(self, conversation):
        conversation.process_event(assistant_item())
        done = {"type": "response.output_item.done", "item": {"id": "msg_1", "status": "completed"}}

        item, first_delta = conversation.process_event(done)
        _, second_delta = conversation.process_event(done)

        assert item["status"] == "completed"
        assert first_delta == {"status": "completed"}
        assert second_delta is None

    def test_function_call_completion_reports_tool(self, conversation):
        conversation.process_event(
            {
                "type": "conversation.item.created",
                "item": {"id": "fc_1", "type": "function_call", "name": "get_weather", "call_id": "call_1"},
            }
        )
        for chunk in ('{"city": ', '"Paris"}'):
            conversation.process_event(
                {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": chunk}
            )

        item, delta = conversation.process_event(
            {"type": "response.output_item.done", "item": {"id": "fc_1", "status": "completed"}}
        )

        assert item["arguments"] == '{"city": "Paris"}'
        assert delta["tool"] == {
            "type": "function",
            "name": "get_weather",
            "call_id": "call_1",
            "arguments": '{"city": "Paris"}',
        }

    def test_function_call_fields_filled_from_done_event(self, conversation):
        conversation.process_event(
            {"type": "conversation.item.created", "item": {"id": "fc_1", "type": "function_call"}}
        )
        _, delta = conversation.process_event(
            {
                "type": "response.output_item.done",
                "item": {
                    "id": "fc_1",
                    "status": "completed",
                    "name": "lookup",
                    "call_id": "call_9",
                    "arguments": "{}",
                },
            }
        )

        assert delta["tool"]["name"] == "lookup"
        assert delta["tool"]["call_id"] == "call_9"


class TestTruncateAndDelete:
    """Test truncation and deletion."""

    def test_truncate_cuts_audio_and_clears_transcript(self, conversation):
        conversation.process_event(assistant_item())
        conversation.process_event(
            {
                "type": "response.audio.delta",
                "item_id": "msg_1",
                "content_index": 0,
                "delta": array_buffer_to_base64(np.arange(2400, dtype=np.int16)),
            }
        )
        conversation.process_event(
            {"type": "response.audio_transcript.delta", "item_id": "msg_1", "content_index": 0, "delta": "long answer"}
        )

        item, _ = conversation.process_event(
            {"type": "conversation.item.truncated", "item_id": "msg_1", "content_index": 0, "audio_end_ms": 50}
        )

        assert item["formatted"]["audio"].size == 1200
        assert item["formatted"]["transcript"] == ""

    def test_delete_removes_item(self, conversation):
        conversation.process_event(user_item("a"))
        conversation.process_event(user_item("b"))

        item, _ = conversation.process_event({"type": "conversation.item.deleted", "item_id": "a"})

        assert item["id"] == "a"
        assert conversation.get_item("a") is None
        assert [i["id"] for i in conversation.get_items()] == ["b"]

    def test_delete_unknown_item_is_skipped(self, conversation):
        assert conversation.process_event({"type": "conversation.item.deleted", "item_id": "x"}) == (None, None)


class TestInputAudio:
    """Test input audio capture per user turn."""

    def test_speech_segment_attached_to_user_item(self, conversation):
        conversation.append_input_audio(np.arange(24000, dtype=np.int16))

        conversation.process_event(
            {"type": "input_audio_buffer.speech_started", "item_id": "u1", "audio_start_ms": 200}
        )
        conversation.process_event(
            {"type": "input_audio_buffer.speech_stopped", "item_id": "u1", "audio_end_ms": 700}
        )
        item, _ = conversation.process_event(user_item("u1"))

        audio = item["formatted"]["audio"]
        assert audio.size == 12000
        assert audio[0] == 4800

    def test_speech_stopped_after_item_created(self, conversation):
        conversation.append_input_audio(np.ones(24000, dtype=np.int16))
        conversation.process_event(
            {"type": "input_audio_buffer.speech_started", "item_id": "u1", "audio_start_ms": 0}
        )
        conversation.process_event(user_item("u1"))

        item, delta = conversation.process_event(
            {"type": "input_audio_buffer.speech_stopped", "item_id": "u1", "audio_end_ms": 500}
        )

        assert delta["audio"].size == 12000
        assert item["formatted"]["audio"].size == 12000

    def test_committed_audio_attached_to_next_user_item(self, conversation):
        conversation.append_input_audio(b"\x01\x00\x02\x00")
        committed = conversation.commit_input_audio()

        item, _ = conversation.process_event(user_item("u1"))

        np.testing.assert_array_equal(committed, np.array([1, 2], dtype=np.int16))
        np.testing.assert_array_equal(item["formatted"]["audio"], committed)
        assert conversation.input_audio_buffer.size == 0
        assert conversation.queued_input_audio is None

    def test_transcript_queued_until_item_exists(self, conversation):
        result = conversation.process_event(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "item_id": "u1",
                "content_index": 0,
                "transcript": "hello there",
            }
        )
        item, _ = conversation.process_event(user_item("u1"))

        assert result == (None, None)
        assert item["formatted"]["transcript"] == "hello there"

    def test_empty_transcript_becomes_space(self, conversation):
        conversation.process_event(user_item("u1", content=[{"type": "input_audio"}]))

        _, delta = conversation.process_event(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "item_id": "u1",
                "content_index": 0,
                "transcript": "",
            }
        )

        assert delta["transcript"] == " "

    def test_clear_resets_state(self, conversation):
        conversation.append_input_audio(np.ones(10, dtype=np.int16))
        conversation.process_event(user_item("u1"))

        conversation.clear()

        assert conversation.get_items() == []
        assert conversation.input_audio_buffer.size == 0


class TestFormatItem:
    """Test the formatted projection."""

    def test_function_call_output_projection(self):
        formatted = format_item({"type": "function_call_output", "call_id": "c", "output": '{"ok": true}'})
        assert formatted["output"] == '{"ok": true}'
        assert formatted["audio"].dtype == np.int16
