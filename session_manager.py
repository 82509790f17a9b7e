"""State-machine based listening session orchestration.

Recognizer callbacks, the hard listening timeout, the no-speech retry delay and
the continuous-mode restart all arrive as events tagged with the attempt that
produced them.  They are queued and handled one at a time under a re-entrant
lock; an event whose attempt is no longer current, or which arrives after the
session left LISTENING, is dropped.  That is what makes the first terminal
event of a session the only one that counts.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from functools import partial
from queue import Queue
from typing import Callable, Optional, Sequence

from confidence import AdaptiveConfidenceController
from config import VoiceSettings
from errors import (
    NO_SPEECH,
    NO_SPEECH_EXHAUSTED,
    TIMEOUT,
    UNKNOWN_ERROR,
    AudioUnavailable,
    classify_recognizer_error,
    message_for,
)
from interfaces import AudioMonitor, RecognizerAdapter, Timer, TimerFactory
from interpreter import contains_command_keyword, parse_voice_command
from models import (
    Alternative,
    AudioFrame,
    RecognitionEvent,
    RecognitionKind,
    RecognitionSession,
    SessionState,
    TranscriptResult,
    VoiceActivitySample,
    VoiceCommand,
)

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TextCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]
ActivityCallback = Callable[[VoiceActivitySample], None]
TranscriptCallback = Callable[[TranscriptResult], None]
CommandCallback = Callable[[VoiceCommand, TranscriptResult], None]

LISTENING_MESSAGE = "Listening..."
LOW_CONFIDENCE_MESSAGE = "Sorry, I didn't catch that clearly. Please try again."
ALTERNATIVE_TOLERANCE = 0.9

_TIMEOUT = "timeout"
_RETRY = "retry"
_RESTART = "restart"


def select_best_alternative(alternatives: Sequence[Alternative]) -> Alternative:
    """Pick the most plausible transcript among recognizer candidates.

    A candidate replaces the current best when it is more confident, or when it
    is within 10% of the best and contains a command keyword.
    """
    best = alternatives[0]
    for candidate in alternatives[1:]:
        if candidate.confidence > best.confidence:
            best = candidate
        elif (
            candidate.confidence >= best.confidence * ALTERNATIVE_TOLERANCE
            and contains_command_keyword(candidate.text)
        ):
            best = candidate
    return best


def _thread_timer(interval: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class RecognitionSessionManager:
    def __init__(
        self,
        monitor: AudioMonitor,
        recognizer: RecognizerAdapter,
        controller: Optional[AdaptiveConfidenceController] = None,
        interpret: Callable[[str], VoiceCommand] = parse_voice_command,
        listen_timeout_s: float = 10.0,
        retry_delay_s: float = 1.0,
        max_retries: int = 2,
        continuous_mode: bool = False,
        continuous_restart_s: float = 0.5,
        language: str = "en-US",
        queue_maxsize: int = 200,
        timer_factory: Optional[TimerFactory] = None,
        on_state_change: Optional[StateCallback] = None,
        on_partial: Optional[TextCallback] = None,
        on_status: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_activity: Optional[ActivityCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_command: Optional[CommandCallback] = None,
    ) -> None:
        self._monitor = monitor
        self._recognizer = recognizer
        self._controller = controller or AdaptiveConfidenceController()
        self._interpret = interpret
        self._listen_timeout_s = listen_timeout_s
        self._retry_delay_s = retry_delay_s
        self._max_retries = max_retries
        self._continuous_mode = continuous_mode
        self._continuous_restart_s = continuous_restart_s
        self._language = language
        self._queue_maxsize = queue_maxsize
        self._timer_factory = timer_factory or _thread_timer

        self._on_state_change = on_state_change
        self._on_partial = on_partial
        self._on_status = on_status
        self._on_error = on_error
        self._on_activity = on_activity
        self._on_transcript = on_transcript
        self._on_command = on_command

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[RecognitionSession] = None
        self._session_counter = 0
        self._attempt = 0
        self._events: deque[tuple[int, RecognitionEvent]] = deque()
        self._draining = False
        self._timeout_timer: Optional[Timer] = None
        self._retry_timer: Optional[Timer] = None
        self._restart_timer: Optional[Timer] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[RecognitionSession]:
        return self._session

    @property
    def controller(self) -> AdaptiveConfidenceController:
        return self._controller

    @property
    def continuous_mode(self) -> bool:
        return self._continuous_mode

    def apply_settings(self, settings: VoiceSettings) -> None:
        with self._lock:
            self._language = settings.language
            self._continuous_mode = settings.continuous_mode
            self._controller.set_sensitivity(settings.sensitivity)
            self._recognizer.set_language(settings.language)

    def replace_recognizer(self, recognizer: RecognizerAdapter) -> None:
        with self._lock:
            self._serialized(self._stop_session)
            self._recognizer = recognizer

    def start(self) -> bool:
        """Open a listening session; a no-op while one is active."""
        with self._lock:
            return self._serialized(self._start_session)

    def stop(self) -> None:
        """Cancel the current session and release microphone and recognizer."""
        with self._lock:
            self._serialized(self._stop_session)

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def _post(self, attempt: int, event: RecognitionEvent) -> None:
        with self._lock:
            self._events.append((attempt, event))
            self._serialized(lambda: None)

    def _serialized(self, action: Callable[[], object]) -> object:
        # Caller holds the lock.  Nested calls run inline; the outermost one
        # drains whatever the action (or callbacks it fired) queued.
        if self._draining:
            return action()
        self._draining = True
        try:
            result = action()
            while self._events:
                attempt, event = self._events.popleft()
                self._handle(attempt, event)
            return result
        finally:
            self._draining = False

    def _handle(self, attempt: int, event: RecognitionEvent) -> None:
        kind = event.kind
        if attempt != self._attempt:
            logger.debug("Dropping %s event from stale attempt %d", kind, attempt)
            return

        if kind == _RETRY:
            if self._state == SessionState.AWAITING_RETRY:
                self._retry_timer = None
                self._begin_listening()
            return
        if kind == _RESTART:
            self._restart_timer = None
            if self._state == SessionState.IDLE:
                self._start_session()
            return

        if self._state != SessionState.LISTENING:
            logger.debug("Dropping %s event in state %s", kind, self._state.value)
            return

        if kind == RecognitionKind.START.value:
            self._notify(self._on_status, LISTENING_MESSAGE)
        elif kind == RecognitionKind.PARTIAL.value or (
            kind == RecognitionKind.RESULT.value and not event.is_final
        ):
            self._notify(self._on_partial, event.text)
        elif kind == RecognitionKind.RESULT.value:
            self._complete(event)
        elif kind == RecognitionKind.ERROR.value:
            code = classify_recognizer_error(event.code)
            if code == NO_SPEECH:
                self._retry_or_fail()
            else:
                self._fail(code, event.message or message_for(code))
        elif kind == RecognitionKind.END.value:
            self._retry_or_fail()
        elif kind == _TIMEOUT:
            self._timeout_timer = None
            self._fail(TIMEOUT, message_for(TIMEOUT))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _start_session(self) -> bool:
        if self._state != SessionState.IDLE:
            logger.debug("Session already active (%s), ignoring start", self._state.value)
            return False
        self._cancel_timer("_restart_timer")
        self._session_counter += 1
        self._session = RecognitionSession(
            session_id=self._session_counter,
            threshold=self._controller.threshold,
        )
        logger.debug(
            "Session %d started (threshold %.2f)",
            self._session.session_id,
            self._session.threshold,
        )
        self._begin_listening()
        return True

    def _begin_listening(self) -> None:
        self._attempt += 1
        attempt = self._attempt
        self._transition(SessionState.LISTENING)

        audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
        try:
            self._monitor.start(audio_queue, self._handle_activity)
        except AudioUnavailable as exc:
            self._fail(exc.code, message_for(exc.code))
            return
        try:
            self._recognizer.start(audio_queue, partial(self._post, attempt))
        except Exception as exc:
            logger.exception("Recognizer failed to start")
            self._fail(UNKNOWN_ERROR, f"start failed: {exc}")
            return
        self._timeout_timer = self._schedule(self._listen_timeout_s, attempt, _TIMEOUT)

    def _complete(self, event: RecognitionEvent) -> None:
        session = self._session
        if session is None:
            logger.debug("Result arrived without a session, ignoring")
            return
        alternatives = list(event.alternatives) or [Alternative(event.text, event.confidence)]
        best = select_best_alternative(alternatives)
        text = best.text.strip()
        if not text:
            self._retry_or_fail()
            return

        result = TranscriptResult(
            text=text,
            confidence=best.confidence,
            is_final=True,
            language=self._language,
            alternatives=tuple(alternatives),
        )
        self._release_attempt()
        self._transition(SessionState.COMPLETED)
        self._controller.record_outcome(True, result.confidence)
        self._notify(self._on_transcript, result)

        if self._controller.accepts(result.confidence, session.threshold):
            command = self._interpret(result.text)
            logger.info("Heard %r (%.2f) -> %s", result.text, result.confidence, command.action.value)
            self._notify(self._on_command, command, result)
        else:
            logger.info(
                "Rejected %r: confidence %.2f below %.2f",
                result.text,
                result.confidence,
                session.threshold,
            )
            self._notify(self._on_status, LOW_CONFIDENCE_MESSAGE)

        self._end_session()
        if self._continuous_mode:
            self._restart_timer = self._schedule(self._continuous_restart_s, self._attempt, _RESTART)

    def _retry_or_fail(self) -> None:
        session = self._session
        if session is None:
            logger.debug("No session to retry, ignoring")
            return
        if session.retry_count >= self._max_retries:
            self._fail(NO_SPEECH_EXHAUSTED, message_for(NO_SPEECH_EXHAUSTED))
            return
        self._release_attempt()
        session.retry_count += 1
        self._transition(SessionState.AWAITING_RETRY)
        total = self._max_retries + 1
        self._notify(self._on_status, f"retrying ({session.retry_count + 1}/{total})")
        self._retry_timer = self._schedule(self._retry_delay_s, self._attempt, _RETRY)

    def _fail(self, code: str, message: str) -> None:
        self._release_attempt()
        self._transition(SessionState.FAILED)
        self._controller.record_outcome(False, error_code=code)
        logger.warning("Session failed: %s (%s)", code, message)
        self._notify(self._on_error, code, message)
        self._end_session()

    def _stop_session(self) -> None:
        if self._state == SessionState.IDLE:
            self._cancel_timer("_restart_timer")
            return
        self._attempt += 1
        self._release_attempt()
        logger.debug("Session cancelled")
        self._end_session()

    def _end_session(self) -> None:
        self._session = None
        self._transition(SessionState.IDLE)

    def _release_attempt(self) -> None:
        self._cancel_timer("_timeout_timer")
        self._cancel_timer("_retry_timer")
        self._safe_stop_recognizer()
        self._safe_stop_monitor()
        self._notify(self._on_activity, VoiceActivitySample.silent())

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._session is not None:
            self._session.state = to_state
        logger.debug("%s -> %s", from_state.value, to_state.value)
        self._notify(self._on_state_change, from_state, to_state)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _handle_activity(self, sample: VoiceActivitySample) -> None:
        if self._state == SessionState.LISTENING:
            self._notify(self._on_activity, sample)

    def _schedule(self, delay_s: float, attempt: int, kind: str) -> Timer:
        timer = self._timer_factory(delay_s, partial(self._post, attempt, RecognitionEvent(kind=kind)))
        timer.start()
        return timer

    def _cancel_timer(self, name: str) -> None:
        timer = getattr(self, name)
        if timer is not None:
            timer.cancel()
            setattr(self, name, None)

    def _safe_stop_recognizer(self) -> None:
        try:
            self._recognizer.stop()
        except Exception:
            logger.exception("Recognizer stop failed")

    def _safe_stop_monitor(self) -> None:
        try:
            self._monitor.stop()
        except Exception:
            logger.exception("Audio monitor stop failed")

    def _notify(self, callback: Optional[Callable[..., None]], *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Session callback failed")
