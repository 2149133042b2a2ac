"""
frontend/speech.py — speech-to-text and text-to-speech adapters.

SpeechInputSession turns a callback-driven recognition backend into a
single-shot session with explicit phases (NOT_STARTED → OPEN → CLOSED).
SpeechOutput keeps at most one utterance playing: every speak() cancels the
previous one first.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Protocol

import pyttsx3
import speech_recognition as sr

logger = logging.getLogger(__name__)

SPEECH_LANGUAGE = "ko-KR"
SPEECH_RATE = 1.0

PHRASE_TIME_LIMIT_SECONDS = 10.0
SESSION_TIMEOUT_SECONDS = 15.0


# ── Speech input ──────────────────────────────────────────────────────────────

class RecognitionBackend(Protocol):
    def start(
        self,
        language: str,
        on_result: Callable[[str], None],
        on_end: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None: ...

    def stop(self) -> None: ...


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    CLOSED = "closed"


class SpeechInputSession:
    """One recognition session, from start to its terminating event.

    Result, end and error all close the session; ``on_end`` fires exactly
    once. A result additionally delivers its transcript through ``on_result``
    before the close. Events arriving after the close are ignored.
    """

    def __init__(
        self,
        backend: RecognitionBackend,
        on_result: Callable[[str], None],
        on_end: Callable[[], None],
        language: str = SPEECH_LANGUAGE,
        timeout: float | None = SESSION_TIMEOUT_SECONDS,
    ):
        self._backend = backend
        self._on_result = on_result
        self._on_end = on_end
        self.language = language
        self._timeout = timeout
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()
        self.phase = SessionPhase.NOT_STARTED

    def start(self) -> None:
        with self._lock:
            if self.phase is not SessionPhase.NOT_STARTED:
                raise RuntimeError("Recognition session was already started.")
            self.phase = SessionPhase.OPEN

        if self._timeout is not None:
            self._timer = threading.Timer(self._timeout, self.stop)
            self._timer.daemon = True
            self._timer.start()

        try:
            self._backend.start(
                self.language, self._handle_result, self._handle_end, self._handle_error
            )
        except Exception as exc:
            self._handle_error(exc)

    def stop(self) -> None:
        """Ask the backend to finish early; the session closes on its end event."""
        if self.phase is SessionPhase.OPEN:
            self._backend.stop()

    def _handle_result(self, transcript: str) -> None:
        # Close first so a concurrent stop/end cannot slip in before the transcript.
        if not self._mark_closed():
            return
        self._on_result(transcript)
        self._finish()

    def _handle_end(self) -> None:
        self._close()

    def _handle_error(self, error: Exception) -> None:
        logger.warning("Speech recognition error: %s", error)
        self._close()

    def _mark_closed(self) -> bool:
        with self._lock:
            if self.phase is SessionPhase.CLOSED:
                return False
            self.phase = SessionPhase.CLOSED
            return True

    def _close(self) -> None:
        if self._mark_closed():
            self._finish()

    def _finish(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._on_end()


class MicrophoneRecognizer:
    """Single-phrase recognition from the default microphone via Google Web Speech."""

    def __init__(self, phrase_time_limit: float = PHRASE_TIME_LIMIT_SECONDS):
        self._recognizer = sr.Recognizer()
        self._phrase_time_limit = phrase_time_limit
        self._stopper: Callable[..., None] | None = None
        self._on_end: Callable[[], None] | None = None

    def start(self, language, on_result, on_end, on_error) -> None:
        self._on_end = on_end

        def _heard(recognizer: sr.Recognizer, audio: sr.AudioData) -> None:
            try:
                transcript = recognizer.recognize_google(audio, language=language)
            except (sr.UnknownValueError, sr.RequestError) as exc:
                self._halt()
                on_error(exc)
                return
            self._halt()
            on_result(transcript)
            on_end()

        self._stopper = self._recognizer.listen_in_background(
            sr.Microphone(), _heard, phrase_time_limit=self._phrase_time_limit
        )

    def stop(self) -> None:
        self._halt()
        if self._on_end is not None:
            self._on_end()

    def _halt(self) -> None:
        # Called from the listener thread too, so never join it.
        if self._stopper is not None:
            self._stopper(wait_for_stop=False)
            self._stopper = None


def stt_available() -> bool:
    try:
        return bool(sr.Microphone.list_microphone_names())
    except (AttributeError, OSError) as exc:
        logger.info("Speech input unavailable: %s", exc)
        return False


# ── Speech output ─────────────────────────────────────────────────────────────

class Synthesizer(Protocol):
    def speak(self, text: str, language: str, rate: float) -> None: ...

    def cancel(self) -> None: ...


def _voice_matches(voice, language: str) -> bool:
    prefix = language.split("-")[0].lower()
    for lang in getattr(voice, "languages", None) or []:
        if isinstance(lang, bytes):
            lang = lang.decode("utf-8", errors="ignore")
        if prefix in lang.lower():
            return True
    return prefix in (voice.id or "").lower()


class Pyttsx3Synthesizer:
    def __init__(self, engine=None):
        self._engine = engine or pyttsx3.init()
        self._base_rate = self._engine.getProperty("rate")
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None

    def speak(self, text: str, language: str, rate: float) -> None:
        voice = next(
            (v for v in self._engine.getProperty("voices") if _voice_matches(v, language)),
            None,
        )

        def _run() -> None:
            with self._lock:
                if voice is not None:
                    self._engine.setProperty("voice", voice.id)
                self._engine.setProperty("rate", int(self._base_rate * rate))
                self._engine.say(text)
                self._engine.runAndWait()

        self._worker = threading.Thread(target=_run, name="speech-output", daemon=True)
        self._worker.start()

    def cancel(self) -> None:
        self._engine.stop()
        if self._worker is not None and self._worker.is_alive():
            self._worker.join(timeout=1.0)


class SpeechOutput:
    """Fire-and-forget utterance slot of depth 1."""

    def __init__(
        self,
        synthesizer: Synthesizer | None,
        language: str = SPEECH_LANGUAGE,
        rate: float = SPEECH_RATE,
    ):
        self._synthesizer = synthesizer
        self.language = language
        self.rate = rate

    @property
    def available(self) -> bool:
        return self._synthesizer is not None

    def speak(self, text: str) -> None:
        if self._synthesizer is None:
            return
        self._synthesizer.cancel()
        self._synthesizer.speak(text, self.language, self.rate)


def make_speech_output() -> SpeechOutput:
    try:
        synthesizer = Pyttsx3Synthesizer()
    except Exception as exc:
        logger.info("Speech output unavailable: %s", exc)
        synthesizer = None
    return SpeechOutput(synthesizer)


def make_recognition_backend() -> RecognitionBackend | None:
    return MicrophoneRecognizer() if stt_available() else None
