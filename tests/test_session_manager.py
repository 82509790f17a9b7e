from __future__ import annotations

from queue import Queue
from typing import Callable

from confidence import AdaptiveConfidenceController, RecognitionAnalytics
from config import VoiceSettings
from errors import (
    NETWORK_ERROR,
    NO_MICROPHONE,
    NO_SPEECH_EXHAUSTED,
    PERMISSION_DENIED,
    TIMEOUT,
    UNKNOWN_ERROR,
    AudioUnavailable,
)
from models import (
    Alternative,
    AudioFrame,
    CommandAction,
    Priority,
    RecognitionEvent,
    RecognitionKind,
    SessionState,
    VoiceActivitySample,
)
from session_manager import (
    LOW_CONFIDENCE_MESSAGE,
    RecognitionSessionManager,
    select_best_alternative,
)


class FakeMonitor:
    def __init__(self, fail_with: AudioUnavailable | None = None) -> None:
        self.fail_with = fail_with
        self.start_count = 0
        self.stop_count = 0
        self.on_sample = None
        self.queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue=None, on_sample=None) -> None:  # noqa: ANN001
        if self.fail_with is not None:
            raise self.fail_with
        self.start_count += 1
        self.queue = audio_queue
        self.on_sample = on_sample

    def stop(self) -> None:
        self.stop_count += 1


class FakeRecognizer:
    def __init__(self) -> None:
        self.on_event = None
        self.start_count = 0
        self.stop_count = 0
        self.language = ""

    def start(self, audio_queue, on_event) -> None:  # noqa: ANN001
        self.start_count += 1
        self.on_event = on_event

    def stop(self) -> None:
        self.stop_count += 1

    def set_language(self, language: str) -> None:
        self.language = language

    def emit(self, event: RecognitionEvent) -> None:
        assert self.on_event is not None
        self.on_event(event)

    def result(self, text: str, confidence: float = 0.9, alternatives=None) -> None:  # noqa: ANN001
        self.emit(
            RecognitionEvent(
                kind=RecognitionKind.RESULT.value,
                text=text,
                confidence=confidence,
                alternatives=alternatives or [],
            )
        )

    def error(self, code: str) -> None:
        self.emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, code=code))


class ManualTimer:
    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, callback)
        self.created.append(timer)
        return timer

    def pending(self, interval: float) -> list[ManualTimer]:
        return [t for t in self.created if t.started and not t.cancelled and t.interval == interval]

    def fire(self, interval: float) -> None:
        timers = self.pending(interval)
        assert timers, f"no pending {interval}s timer"
        for timer in timers:
            timer.cancelled = True
            timer.callback()


class Harness:
    def __init__(self, **kwargs) -> None:  # noqa: ANN003
        self.monitor = kwargs.pop("monitor", FakeMonitor())
        self.recognizer = FakeRecognizer()
        self.timers = ManualTimers()
        self.analytics = RecognitionAnalytics()
        self.controller = AdaptiveConfidenceController(self.analytics)
        self.transitions: list[tuple[SessionState, SessionState]] = []
        self.errors: list[tuple[str, str]] = []
        self.statuses: list[str] = []
        self.partials: list[str] = []
        self.commands: list = []
        self.activity: list[VoiceActivitySample] = []
        self.manager = RecognitionSessionManager(
            monitor=self.monitor,
            recognizer=self.recognizer,
            controller=self.controller,
            timer_factory=self.timers,
            on_state_change=lambda f, t: self.transitions.append((f, t)),
            on_error=lambda c, m: self.errors.append((c, m)),
            on_status=self.statuses.append,
            on_partial=self.partials.append,
            on_activity=self.activity.append,
            on_command=lambda cmd, result: self.commands.append((cmd, result)),
            **kwargs,
        )


# ---------------------------------------------------------------
# Alternative selection
# ---------------------------------------------------------------

def test_higher_confidence_alternative_wins() -> None:
    best = select_best_alternative(
        [Alternative("by milk", 0.6), Alternative("buy milk", 0.8)]
    )
    assert best.text == "buy milk"


def test_keyword_alternative_within_ten_percent_wins() -> None:
    best = select_best_alternative(
        [Alternative("ad buy milk", 0.80), Alternative("add buy milk", 0.75)]
    )
    assert best.text == "add buy milk"


def test_keyword_alternative_far_below_does_not_win() -> None:
    best = select_best_alternative(
        [Alternative("ad buy milk", 0.80), Alternative("add buy milk", 0.70)]
    )
    assert best.text == "ad buy milk"


def test_close_alternative_without_keyword_does_not_win() -> None:
    best = select_best_alternative(
        [Alternative("bye milk", 0.80), Alternative("buy milk", 0.78)]
    )
    assert best.text == "bye milk"


# ---------------------------------------------------------------
# Start / happy path
# ---------------------------------------------------------------

def test_start_opens_monitor_recognizer_and_timeout() -> None:
    h = Harness()

    assert h.manager.start() is True

    assert h.manager.state == SessionState.LISTENING
    assert h.monitor.start_count == 1
    assert h.recognizer.start_count == 1
    assert len(h.timers.pending(10.0)) == 1
    assert h.manager.session is not None
    assert h.manager.session.threshold == h.controller.threshold


def test_start_while_listening_is_noop() -> None:
    h = Harness()
    h.manager.start()

    assert h.manager.start() is False
    assert h.recognizer.start_count == 1
    assert h.monitor.start_count == 1


def test_final_result_completes_and_dispatches_command() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.result("Add buy milk high priority", confidence=0.92)

    assert h.manager.state == SessionState.IDLE
    assert (SessionState.LISTENING, SessionState.COMPLETED) in h.transitions
    assert (SessionState.COMPLETED, SessionState.IDLE) in h.transitions
    assert len(h.commands) == 1
    command, result = h.commands[0]
    assert command.action == CommandAction.ADD
    assert command.text == "buy milk"
    assert command.priority == Priority.HIGH
    assert result.confidence == 0.92
    assert h.recognizer.stop_count >= 1
    assert h.monitor.stop_count >= 1
    assert h.timers.pending(10.0) == []
    assert h.analytics.total_attempts == 1
    assert h.analytics.successful_recognitions == 1


def test_result_uses_keyword_biased_alternative() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.result(
        "ad laundry",
        confidence=0.8,
        alternatives=[Alternative("ad laundry", 0.8), Alternative("add laundry", 0.76)],
    )

    command, result = h.commands[0]
    assert result.text == "add laundry"
    assert command.action == CommandAction.ADD
    assert command.text == "laundry"


def test_low_confidence_result_is_not_interpreted() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.result("add buy milk", confidence=0.3)

    assert h.commands == []
    assert LOW_CONFIDENCE_MESSAGE in h.statuses
    assert h.manager.state == SessionState.IDLE
    assert h.analytics.successful_recognitions == 1


def test_result_exactly_at_threshold_is_rejected() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.result("add buy milk", confidence=h.controller.threshold)

    assert h.commands == []
    assert LOW_CONFIDENCE_MESSAGE in h.statuses


def test_retry_without_session_is_ignored() -> None:
    h = Harness()

    h.manager._retry_or_fail()

    assert h.manager.state == SessionState.IDLE
    assert h.transitions == []
    assert h.errors == []


def test_partial_results_are_forwarded() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.PARTIAL.value, text="add"))
    h.recognizer.emit(
        RecognitionEvent(kind=RecognitionKind.RESULT.value, text="add milk", is_final=False)
    )

    assert h.partials == ["add", "add milk"]
    assert h.manager.state == SessionState.LISTENING


def test_activity_is_forwarded_and_zeroed_on_terminal() -> None:
    h = Harness()
    h.manager.start()
    loud = VoiceActivitySample(level=0.5, voice_detected=True, frequency=220.0, confidence=1.0)

    h.monitor.on_sample(loud)
    h.recognizer.result("clear all")

    assert h.activity[0] == loud
    assert h.activity[-1] == VoiceActivitySample.silent()


# ---------------------------------------------------------------
# Retry on no speech
# ---------------------------------------------------------------

def test_no_speech_retries_twice_then_fails() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.error("no-speech")
    assert h.manager.state == SessionState.AWAITING_RETRY
    assert h.statuses[-1] == "retrying (2/3)"
    assert h.monitor.stop_count == 1
    h.timers.fire(1.0)
    assert h.manager.state == SessionState.LISTENING
    assert h.recognizer.start_count == 2

    h.recognizer.error("no-speech")
    assert h.statuses[-1] == "retrying (3/3)"
    h.timers.fire(1.0)
    assert h.recognizer.start_count == 3

    h.recognizer.error("no-speech")

    assert h.manager.state == SessionState.IDLE
    assert (SessionState.LISTENING, SessionState.FAILED) in h.transitions
    assert h.errors[-1][0] == NO_SPEECH_EXHAUSTED
    assert h.analytics.total_attempts == 1
    assert h.analytics.successful_recognitions == 0
    assert h.analytics.last_error == NO_SPEECH_EXHAUSTED


def test_end_without_result_counts_as_no_speech() -> None:
    h = Harness()
    h.manager.start()

    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))

    assert h.manager.state == SessionState.AWAITING_RETRY


def test_events_from_previous_attempt_are_dropped() -> None:
    h = Harness()
    h.manager.start()
    first_attempt = h.recognizer.on_event
    h.recognizer.error("no-speech")
    h.timers.fire(1.0)

    first_attempt(RecognitionEvent(kind=RecognitionKind.RESULT.value, text="add ghost", confidence=1.0))

    assert h.commands == []
    assert h.manager.state == SessionState.LISTENING


def test_result_after_retry_completes_session() -> None:
    h = Harness()
    h.manager.start()
    h.recognizer.error("no-speech")
    h.timers.fire(1.0)

    h.recognizer.result("complete task 2", confidence=0.9)

    command, _ = h.commands[0]
    assert command.action == CommandAction.COMPLETE
    assert command.index == 1
    assert h.analytics.total_attempts == 1


# ---------------------------------------------------------------
# Failures
# ---------------------------------------------------------------

def test_timeout_fails_and_stops_recognizer() -> None:
    h = Harness()
    h.manager.start()

    h.timers.fire(10.0)

    assert h.manager.state == SessionState.IDLE
    assert h.errors[0][0] == TIMEOUT
    assert h.recognizer.stop_count >= 1
    assert h.monitor.stop_count >= 1


def test_recognizer_errors_are_classified() -> None:
    for raw, expected in [
        ("network", NETWORK_ERROR),
        ("not-allowed", PERMISSION_DENIED),
        ("mic-denied", NO_MICROPHONE),
        ("something-else", UNKNOWN_ERROR),
    ]:
        h = Harness()
        h.manager.start()
        h.recognizer.error(raw)

        assert h.manager.state == SessionState.IDLE
        assert h.errors[0][0] == expected
        assert h.recognizer.start_count == 1


def test_microphone_unavailable_fails_session() -> None:
    h = Harness(monitor=FakeMonitor(fail_with=AudioUnavailable("no device")))

    h.manager.start()

    assert h.manager.state == SessionState.IDLE
    assert h.errors[0][0] == NO_MICROPHONE
    assert h.recognizer.start_count == 0
    assert h.timers.pending(10.0) == []


def test_only_first_terminal_event_counts() -> None:
    h = Harness()
    h.manager.start()
    stale_timeout = h.timers.pending(10.0)[0]

    h.recognizer.result("add eggs", confidence=0.9)
    h.recognizer.error("network")
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))
    stale_timeout.callback()

    assert len(h.commands) == 1
    assert h.errors == []
    assert h.analytics.total_attempts == 1


# ---------------------------------------------------------------
# Stop / cancellation
# ---------------------------------------------------------------

def test_stop_when_idle_is_noop() -> None:
    h = Harness()

    h.manager.stop()

    assert h.transitions == []
    assert h.monitor.stop_count == 0
    assert h.recognizer.stop_count == 0


def test_stop_while_listening_releases_everything() -> None:
    h = Harness()
    h.manager.start()

    h.manager.stop()
    h.manager.stop()

    assert h.manager.state == SessionState.IDLE
    assert h.monitor.stop_count == 1
    assert h.recognizer.stop_count == 1
    assert h.timers.pending(10.0) == []
    assert h.analytics.total_attempts == 0


def test_stop_during_retry_cancels_pending_restart() -> None:
    h = Harness()
    h.manager.start()
    h.recognizer.error("no-speech")
    retry_timer = h.timers.pending(1.0)[0]

    h.manager.stop()
    retry_timer.callback()

    assert retry_timer.cancelled is True
    assert h.manager.state == SessionState.IDLE
    assert h.recognizer.start_count == 1


# ---------------------------------------------------------------
# Settings / continuous mode
# ---------------------------------------------------------------

def test_apply_settings_updates_threshold_and_language() -> None:
    h = Harness()

    h.manager.apply_settings(VoiceSettings(language="fr-FR", sensitivity=0.8, continuous_mode=True))

    assert abs(h.controller.threshold - 0.2) < 1e-9
    assert h.recognizer.language == "fr-FR"
    assert h.manager.continuous_mode is True


def test_continuous_mode_restarts_after_completion() -> None:
    h = Harness(continuous_mode=True)
    h.manager.start()
    h.recognizer.result("add eggs", confidence=0.9)
    assert h.manager.state == SessionState.IDLE

    h.timers.fire(0.5)

    assert h.manager.state == SessionState.LISTENING
    assert h.recognizer.start_count == 2


def test_continuous_mode_does_not_restart_after_failure() -> None:
    h = Harness(continuous_mode=True)
    h.manager.start()

    h.recognizer.error("network")

    assert h.timers.pending(0.5) == []
