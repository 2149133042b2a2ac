import json
import os
import sys
from unittest.mock import MagicMock

import httpx
import pytest
import respx

# Ensure frontend/ is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conversation import (
    BACKEND_WEATHER_URL,
    GREETING,
    TRANSPORT_ERROR_NOTICE,
    Conversation,
    ConversationState,
    Message,
    WeatherMeta,
    apply_transcript,
    begin_send,
    close_listening,
    complete_send,
    fail_send,
    initial_state,
    open_listening,
    toggle_auto_speak,
    update_draft,
)
from speech import SpeechOutput

SEOUL_REPLY = {
    "city": "Seoul",
    "weather": "clear sky",
    "temperature": 22,
    "response": "서울은 맑고 22°C입니다.",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

class FakeRecognitionBackend:
    """Records calls and lets the test fire the session callbacks."""

    def __init__(self):
        self.started = []
        self.stop_calls = 0
        self.on_result = None
        self.on_end = None
        self.on_error = None

    def start(self, language, on_result, on_end, on_error):
        self.started.append(language)
        self.on_result = on_result
        self.on_end = on_end
        self.on_error = on_error

    def stop(self):
        self.stop_calls += 1


def _make_conversation(recognition_backend=None, synthesizer=None):
    return Conversation(
        speech_output=SpeechOutput(synthesizer),
        recognition_backend=recognition_backend,
        session_timeout=None,
    )


# ── Tests: transitions ────────────────────────────────────────────────────────

def test_initial_state_seeds_greeting():
    state = initial_state(stt_available=True, tts_available=False)

    assert len(state.messages) == 1
    assert state.messages[0].role == "assistant"
    assert state.messages[0].content == GREETING
    assert state.messages[0].meta is None
    assert state.draft_input == ""
    assert state.request_in_flight is False
    assert state.listening is False
    assert state.auto_speak is False
    assert state.stt_available is True
    assert state.tts_available is False


def test_message_ids_are_unique():
    assert Message(role="user", content="a").id != Message(role="user", content="a").id


def test_begin_send_appends_trimmed_user_message():
    state = update_draft(initial_state(), "  서울 날씨  ")

    new_state, text = begin_send(state)

    assert text == "서울 날씨"
    assert new_state.messages[-1].role == "user"
    assert new_state.messages[-1].content == "서울 날씨"
    assert new_state.draft_input == ""
    assert new_state.request_in_flight is True


@pytest.mark.parametrize("draft", ["", "   ", "\n\t"])
def test_begin_send_blank_draft_is_noop(draft):
    state = update_draft(initial_state(), draft)

    new_state, text = begin_send(state)

    assert text is None
    assert new_state is state


def test_begin_send_while_sending_is_noop():
    state, _ = begin_send(update_draft(initial_state(), "서울 날씨"))
    state = update_draft(state, "부산 날씨")

    new_state, text = begin_send(state)

    assert text is None
    assert new_state is state
    assert new_state.draft_input == "부산 날씨"


def test_complete_send_success_attaches_meta():
    state, _ = begin_send(update_draft(initial_state(), "서울 날씨"))

    new_state, reply = complete_send(state, SEOUL_REPLY)

    assert reply == "서울은 맑고 22°C입니다."
    last = new_state.messages[-1]
    assert last.role == "assistant"
    assert last.content == reply
    assert last.meta == WeatherMeta(city="Seoul", weather="clear sky", temperature=22.0)
    assert new_state.request_in_flight is False


def test_complete_send_error_body_adds_notice_without_meta():
    state, _ = begin_send(update_draft(initial_state(), "서울 날씨"))

    new_state, reply = complete_send(state, {"error": "Weather API error: Not Found"})

    assert reply is None
    last = new_state.messages[-1]
    assert last.content == "오류가 발생했습니다: Weather API error: Not Found"
    assert last.meta is None
    assert new_state.request_in_flight is False


def test_complete_send_malformed_body_is_communication_error():
    state, _ = begin_send(update_draft(initial_state(), "서울 날씨"))

    new_state, reply = complete_send(state, {"city": "Seoul"})

    assert reply is None
    assert new_state.messages[-1].content == TRANSPORT_ERROR_NOTICE
    assert new_state.request_in_flight is False


def test_fail_send_releases_guard():
    state, _ = begin_send(update_draft(initial_state(), "서울 날씨"))

    new_state = fail_send(state)

    assert new_state.messages[-1].content == TRANSPORT_ERROR_NOTICE
    assert new_state.messages[-1].meta is None
    assert new_state.request_in_flight is False


def test_flag_transitions():
    state = ConversationState()

    assert toggle_auto_speak(state).auto_speak is True
    assert toggle_auto_speak(toggle_auto_speak(state)).auto_speak is False
    assert open_listening(state).listening is True
    assert close_listening(open_listening(state)).listening is False
    assert apply_transcript(update_draft(state, "old"), "서울 날씨").draft_input == "서울 날씨"


def test_transitions_leave_previous_state_untouched():
    state = initial_state()
    sent, _ = begin_send(update_draft(state, "서울 날씨"))

    assert len(state.messages) == 1
    assert len(sent.messages) == 2


# ── Tests: Conversation.send ──────────────────────────────────────────────────

@respx.mock
async def test_send_success_appends_reply():
    route = respx.post(BACKEND_WEATHER_URL).mock(
        return_value=httpx.Response(200, json=SEOUL_REPLY)
    )
    conversation = _make_conversation()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    assert route.called
    assert json.loads(route.calls.last.request.content) == {"user_input": "서울 날씨"}
    state = conversation.state
    assert [m.role for m in state.messages] == ["assistant", "user", "assistant"]
    assert state.messages[1].content == "서울 날씨"
    assert state.messages[-1].meta.city == "Seoul"
    assert state.request_in_flight is False
    assert state.draft_input == ""


@respx.mock
async def test_send_server_error_shows_notice():
    respx.post(BACKEND_WEATHER_URL).mock(
        return_value=httpx.Response(500, json={"error": "Weather API error: Not Found"})
    )
    conversation = _make_conversation()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    last = conversation.state.messages[-1]
    assert "Weather API error" in last.content
    assert last.meta is None
    assert conversation.state.request_in_flight is False


@respx.mock
async def test_send_transport_failure_shows_communication_error():
    respx.post(BACKEND_WEATHER_URL).mock(side_effect=httpx.ConnectError("refused"))
    conversation = _make_conversation()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    assert conversation.state.messages[-1].content == TRANSPORT_ERROR_NOTICE
    assert conversation.state.request_in_flight is False


@respx.mock
async def test_send_non_json_body_shows_communication_error():
    respx.post(BACKEND_WEATHER_URL).mock(return_value=httpx.Response(502, text="Bad Gateway"))
    conversation = _make_conversation()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    assert conversation.state.messages[-1].content == TRANSPORT_ERROR_NOTICE
    assert conversation.state.request_in_flight is False


@respx.mock
async def test_send_releases_guard_on_any_client_failure():
    respx.post(BACKEND_WEATHER_URL).mock(side_effect=httpx.InvalidURL("bad url"))
    conversation = _make_conversation()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    assert conversation.state.request_in_flight is False
    assert conversation.state.messages[-1].role == "assistant"
    assert conversation.state.messages[-1].content == TRANSPORT_ERROR_NOTICE


@respx.mock
async def test_submit_sends_typed_text_in_one_step():
    route = respx.post(BACKEND_WEATHER_URL).mock(
        return_value=httpx.Response(200, json=SEOUL_REPLY)
    )
    conversation = _make_conversation()

    await conversation.submit("  서울 날씨 ")

    assert route.call_count == 1
    assert json.loads(route.calls.last.request.content) == {"user_input": "서울 날씨"}
    assert conversation.state.messages[-1].meta.city == "Seoul"
    assert conversation.state.draft_input == ""


@respx.mock
async def test_submit_blank_text_is_noop():
    route = respx.post(BACKEND_WEATHER_URL).mock(
        return_value=httpx.Response(200, json=SEOUL_REPLY)
    )
    conversation = _make_conversation()

    await conversation.submit("   ")

    assert not route.called
    assert len(conversation.state.messages) == 1
    assert conversation.state.request_in_flight is False


@respx.mock
async def test_send_blank_draft_makes_no_request():
    route = respx.post(BACKEND_WEATHER_URL).mock(
        return_value=httpx.Response(200, json=SEOUL_REPLY)
    )
    conversation = _make_conversation()
    conversation.update_draft("   ")

    await conversation.send()

    assert not route.called
    assert len(conversation.state.messages) == 1


@respx.mock
async def test_auto_speak_on_speaks_each_reply_once():
    respx.post(BACKEND_WEATHER_URL).mock(return_value=httpx.Response(200, json=SEOUL_REPLY))
    synthesizer = MagicMock()
    conversation = _make_conversation(synthesizer=synthesizer)
    conversation.toggle_auto_speak()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    synthesizer.speak.assert_called_once_with("서울은 맑고 22°C입니다.", "ko-KR", 1.0)


@respx.mock
async def test_auto_speak_off_never_speaks():
    respx.post(BACKEND_WEATHER_URL).mock(return_value=httpx.Response(200, json=SEOUL_REPLY))
    synthesizer = MagicMock()
    conversation = _make_conversation(synthesizer=synthesizer)
    conversation.update_draft("서울 날씨")

    await conversation.send()

    synthesizer.speak.assert_not_called()


@respx.mock
async def test_auto_speak_skips_error_replies():
    respx.post(BACKEND_WEATHER_URL).mock(
        return_value=httpx.Response(500, json={"error": "Internal server error"})
    )
    synthesizer = MagicMock()
    conversation = _make_conversation(synthesizer=synthesizer)
    conversation.toggle_auto_speak()
    conversation.update_draft("서울 날씨")

    await conversation.send()

    synthesizer.speak.assert_not_called()


def test_request_speak_ignores_auto_speak():
    synthesizer = MagicMock()
    conversation = _make_conversation(synthesizer=synthesizer)

    conversation.request_speak(GREETING)

    synthesizer.cancel.assert_called_once()
    synthesizer.speak.assert_called_once_with(GREETING, "ko-KR", 1.0)


def test_tts_capability_follows_synthesizer():
    assert _make_conversation().state.tts_available is False
    assert _make_conversation(synthesizer=MagicMock()).state.tts_available is True


# ── Tests: speech input ───────────────────────────────────────────────────────

def test_toggle_listening_without_capability_is_noop():
    conversation = _make_conversation()

    conversation.toggle_listening()

    assert conversation.state.stt_available is False
    assert conversation.state.listening is False


def test_toggle_listening_starts_korean_session():
    backend = FakeRecognitionBackend()
    conversation = _make_conversation(recognition_backend=backend)

    conversation.toggle_listening()

    assert backend.started == ["ko-KR"]
    assert conversation.state.listening is True


def test_result_then_end_fills_draft_and_stops_listening():
    backend = FakeRecognitionBackend()
    conversation = _make_conversation(recognition_backend=backend)
    conversation.toggle_listening()

    backend.on_result("서울 날씨")
    backend.on_end()

    assert conversation.state.draft_input == "서울 날씨"
    assert conversation.state.listening is False
    # transcript is not sent automatically
    assert len(conversation.state.messages) == 1


def test_second_toggle_requests_stop_and_waits_for_end():
    backend = FakeRecognitionBackend()
    conversation = _make_conversation(recognition_backend=backend)
    conversation.toggle_listening()

    conversation.toggle_listening()

    assert backend.stop_calls == 1
    assert conversation.state.listening is True

    backend.on_end()

    assert conversation.state.listening is False


def test_recognition_error_stops_listening_silently():
    backend = FakeRecognitionBackend()
    conversation = _make_conversation(recognition_backend=backend)
    conversation.toggle_listening()

    backend.on_error(RuntimeError("no-speech"))

    assert conversation.state.listening is False
    assert len(conversation.state.messages) == 1


@respx.mock
async def test_transcript_during_send_only_touches_draft():
    respx.post(BACKEND_WEATHER_URL).mock(return_value=httpx.Response(200, json=SEOUL_REPLY))
    backend = FakeRecognitionBackend()
    conversation = _make_conversation(recognition_backend=backend)
    conversation.update_draft("서울 날씨")
    conversation.toggle_listening()

    await conversation.send()
    backend.on_result("부산 날씨")

    assert conversation.state.draft_input == "부산 날씨"
    assert conversation.state.messages[-1].meta.city == "Seoul"
    assert conversation.state.listening is False
