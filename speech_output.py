"""Spoken feedback via pyttsx3."""

from __future__ import annotations

import logging
import threading
from queue import Queue
from typing import Optional

try:
    import pyttsx3
except Exception:  # pragma: no cover
    pyttsx3 = None  # type: ignore

logger = logging.getLogger(__name__)

# pyttsx3 speaks at roughly 200 words per minute at rate 1.0.
BASE_WORDS_PER_MINUTE = 200


class Pyttsx3SpeechOutput:
    """Fire-and-forget text-to-speech.

    Utterances are queued and spoken in order by one daemon thread, since the
    pyttsx3 engine must stay on the thread that created it.
    """

    def __init__(self, volume: float = 0.8, enabled: bool = True) -> None:
        self._volume = volume
        self.enabled = enabled
        self._queue: Queue[tuple[str, float]] = Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def speak(self, text: str, rate: float = 1.0) -> None:
        if not self.enabled or not text.strip():
            return
        if pyttsx3 is None:
            logger.info("pyttsx3 is not installed, not speaking: %s", text)
            return
        self._ensure_worker()
        self._queue.put((text, rate))

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._worker, daemon=True)
            self._thread.start()

    def _worker(self) -> None:
        try:
            engine = pyttsx3.init()
            engine.setProperty("volume", self._volume)
        except Exception:
            logger.exception("Text-to-speech engine unavailable")
            return
        while True:
            text, rate = self._queue.get()
            try:
                engine.setProperty("rate", int(BASE_WORDS_PER_MINUTE * rate))
                engine.say(text)
                engine.runAndWait()
            except Exception:
                logger.exception("Failed to speak %r", text)
