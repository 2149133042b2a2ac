"""
frontend/conversation.py — conversation state and its transitions.

ConversationState is immutable; every user or speech event maps to a pure
function returning the next state. Conversation wires those transitions to
the weather backend and the two speech adapters.
"""

import logging
import os
import threading
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal

import httpx
from dotenv import load_dotenv

from speech import (
    SESSION_TIMEOUT_SECONDS,
    SPEECH_LANGUAGE,
    RecognitionBackend,
    SpeechInputSession,
    SpeechOutput,
)

load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

BACKEND_PORT = int(os.getenv("BACKEND_PORT", "8001"))
BACKEND_WEATHER_URL = f"http://localhost:{BACKEND_PORT}/api/weather"
BACKEND_TIMEOUT_SECONDS = 60.0

GREETING = "안녕하세요! 날씨가 궁금한 지역을 물어보세요 ☁️"
ERROR_NOTICE = "오류가 발생했습니다: {error}"
TRANSPORT_ERROR_NOTICE = "서버와 통신 중 오류가 발생했습니다."

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class WeatherMeta:
    city: str
    weather: str
    temperature: float


@dataclass(frozen=True)
class Message:
    role: Literal["user", "assistant"]
    content: str
    meta: WeatherMeta | None = None
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class ConversationState:
    messages: tuple[Message, ...] = ()
    draft_input: str = ""
    request_in_flight: bool = False
    listening: bool = False
    auto_speak: bool = False
    stt_available: bool = False
    tts_available: bool = False


# ── Transitions ───────────────────────────────────────────────────────────────

def initial_state(stt_available: bool = False, tts_available: bool = False) -> ConversationState:
    return ConversationState(
        messages=(Message(role="assistant", content=GREETING, id="init"),),
        stt_available=stt_available,
        tts_available=tts_available,
    )


def _append(state: ConversationState, message: Message) -> tuple[Message, ...]:
    return state.messages + (message,)


def update_draft(state: ConversationState, text: str) -> ConversationState:
    return replace(state, draft_input=text)


def begin_send(state: ConversationState) -> tuple[ConversationState, str | None]:
    """Enter Sending with the trimmed draft; returns (state, None) when guarded off."""
    text = state.draft_input.strip()
    if not text or state.request_in_flight:
        return state, None
    return (
        replace(
            state,
            messages=_append(state, Message(role="user", content=text)),
            draft_input="",
            request_in_flight=True,
        ),
        text,
    )


def fail_send(state: ConversationState) -> ConversationState:
    return replace(
        state,
        messages=_append(state, Message(role="assistant", content=TRANSPORT_ERROR_NOTICE)),
        request_in_flight=False,
    )


def complete_send(state: ConversationState, body) -> tuple[ConversationState, str | None]:
    """Fold a backend reply into the log.

    Returns the reply text alongside the new state when the pipeline
    succeeded, otherwise None. A body that is neither an error nor a complete
    result counts as a communication failure.
    """
    if not isinstance(body, dict):
        return fail_send(state), None

    if body.get("error"):
        notice = Message(role="assistant", content=ERROR_NOTICE.format(error=body["error"]))
        return replace(state, messages=_append(state, notice), request_in_flight=False), None

    try:
        meta = WeatherMeta(
            city=body["city"],
            weather=body["weather"],
            temperature=float(body["temperature"]),
        )
        reply = body["response"]
    except (KeyError, TypeError, ValueError):
        logger.error("Malformed backend reply: %r", body)
        return fail_send(state), None

    message = Message(role="assistant", content=reply, meta=meta)
    return replace(state, messages=_append(state, message), request_in_flight=False), reply


def toggle_auto_speak(state: ConversationState) -> ConversationState:
    return replace(state, auto_speak=not state.auto_speak)


def open_listening(state: ConversationState) -> ConversationState:
    return replace(state, listening=True)


def apply_transcript(state: ConversationState, transcript: str) -> ConversationState:
    return replace(state, draft_input=transcript)


def close_listening(state: ConversationState) -> ConversationState:
    return replace(state, listening=False)


# ── Controller ────────────────────────────────────────────────────────────────

class Conversation:
    def __init__(
        self,
        speech_output: SpeechOutput,
        recognition_backend: RecognitionBackend | None = None,
        backend_url: str = BACKEND_WEATHER_URL,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        session_timeout: float | None = SESSION_TIMEOUT_SECONDS,
    ):
        self._speech_output = speech_output
        self._recognition_backend = recognition_backend
        self._backend_url = backend_url
        self._timeout = timeout
        self._session_timeout = session_timeout
        self._session: SpeechInputSession | None = None
        # Speech callbacks arrive on worker threads.
        self._lock = threading.Lock()
        self.state = initial_state(
            stt_available=recognition_backend is not None,
            tts_available=speech_output.available,
        )

    def _apply(self, transition, *args) -> ConversationState:
        with self._lock:
            self.state = transition(self.state, *args)
            return self.state

    def update_draft(self, text: str) -> None:
        self._apply(update_draft, text)

    async def send(self) -> None:
        with self._lock:
            self.state, text = begin_send(self.state)
        if text is None:
            return

        logger.info("Sending user_input=%r", text[:80])
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._backend_url, json={"user_input": text})
            body = response.json()
        except Exception as exc:
            logger.error("Backend request failed: %s", exc)
            self._apply(fail_send)
            return

        with self._lock:
            self.state, reply = complete_send(self.state, body)
            speak = reply is not None and self.state.auto_speak
        if speak:
            self._speech_output.speak(reply)

    async def submit(self, text: str) -> None:
        """Take the composer's current text and send it in one step."""
        self.update_draft(text)
        await self.send()

    def toggle_auto_speak(self) -> None:
        self._apply(toggle_auto_speak)

    def request_speak(self, text: str) -> None:
        self._speech_output.speak(text)

    def toggle_listening(self) -> None:
        if self.state.listening:
            # listening clears on the session's end callback, not here
            if self._session is not None:
                self._session.stop()
            return
        if not self.state.stt_available:
            return

        self._session = SpeechInputSession(
            self._recognition_backend,
            on_result=self._on_recognition_result,
            on_end=self._on_recognition_end,
            language=SPEECH_LANGUAGE,
            timeout=self._session_timeout,
        )
        self._apply(open_listening)
        self._session.start()

    def _on_recognition_result(self, transcript: str) -> None:
        self._apply(apply_transcript, transcript)

    def _on_recognition_end(self) -> None:
        self._apply(close_listening)
