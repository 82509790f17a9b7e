"""Protocol interfaces used by RecognitionSessionManager and TaskCommandExecutor."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Optional, Protocol

from models import AudioFrame, Priority, RecognitionEvent, Task, VoiceActivitySample


class AudioMonitor(Protocol):
    def start(
        self,
        audio_queue: Optional[Queue[AudioFrame | None]] = None,
        on_sample: Optional[Callable[[VoiceActivitySample], None]] = None,
    ) -> None: ...

    def stop(self) -> None: ...


class RecognizerAdapter(Protocol):
    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[RecognitionEvent], None],
    ) -> None: ...

    def stop(self) -> None: ...

    def set_language(self, language: str) -> None: ...


class TaskStore(Protocol):
    def create(self, title: str, priority: Priority, category: Optional[str]) -> Task: ...

    def toggle_complete(self, task_id: str) -> Task: ...

    def complete(self, task_id: str) -> Task: ...

    def delete(self, task_id: str) -> Task: ...

    def clear_all(self) -> None: ...

    def list_active(self) -> list[Task]: ...

    def list_all(self) -> list[Task]: ...


class SpeechOutput(Protocol):
    def speak(self, text: str, rate: float = 1.0) -> None: ...


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]
