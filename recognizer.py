"""Speech recognizer adapters.

Both adapters read ``AudioFrame`` objects from the queue fed by the activity
monitor and decide for themselves when the utterance is over: once speech has
been heard, ``trailing_silence_s`` of quiet ends it; if nothing louder than
``speech_level`` shows up within ``no_speech_timeout_s`` the attempt reports a
``no-speech`` error.  The collected PCM is then sent to the backend and the
outcome flows back through ``on_event`` as ``start`` / ``partial`` /
``result`` / ``error`` / ``end`` events.

* ``GoogleRecognizerAdapter`` uses the SpeechRecognition package and returns
  every alternative with its confidence.
* ``DashscopeRecognizerAdapter`` streams to qwen3-asr-flash.  That model
  reports no confidence, so its results carry 1.0.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import threading
import wave
from queue import Empty, Queue
from typing import Any, Callable, Optional

from errors import (
    ASR_PROTOCOL_ERROR,
    AUTH_FAILED,
    NETWORK_ERROR,
    NO_SPEECH,
    SERVICE_UNAVAILABLE,
)
from models import Alternative, AudioFrame, RecognitionEvent, RecognitionKind

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import speech_recognition as sr
except Exception:  # pragma: no cover
    sr = None  # type: ignore

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

EventCallback = Callable[[RecognitionEvent], None]


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    wav_bytes = buf.getvalue()
    return base64.b64encode(wav_bytes).decode("ascii")


def frame_level(frame: AudioFrame) -> float:
    """Normalised 0-1 loudness of a PCM16 frame, on the monitor's scale."""
    samples = np.frombuffer(frame.pcm16_bytes, dtype=np.int16)
    if samples.size == 0:
        return 0.0
    normalized = samples.astype(np.float64) / 32768.0
    rms = float(np.sqrt(np.mean(normalized * normalized)))
    return min(rms * 10.0, 1.0)


def _frame_duration_s(frame: AudioFrame) -> float:
    samples = len(frame.pcm16_bytes) // (2 * max(frame.channels, 1))
    return samples / float(frame.sample_rate or 16000)


def to_error_event(exc: Exception) -> RecognitionEvent:
    """Map an SDK/network exception to a standard error event."""
    message = str(exc)
    low = message.lower()
    if "401" in low or "auth" in low or "api key" in low:
        code = AUTH_FAILED
    elif "timeout" in low or "network" in low or "connection" in low:
        code = NETWORK_ERROR
    elif "503" in low or "unavailable" in low:
        code = SERVICE_UNAVAILABLE
    else:
        code = ASR_PROTOCOL_ERROR
    return RecognitionEvent(kind=RecognitionKind.ERROR.value, code=code, message=message)


class _EndpointingRecognizer:
    def __init__(
        self,
        language: str = "en-US",
        no_speech_timeout_s: float = 5.0,
        trailing_silence_s: float = 0.8,
        max_utterance_s: float = 9.0,
        speech_level: float = 0.05,
    ) -> None:
        self._language = language
        self._no_speech_timeout_s = no_speech_timeout_s
        self._trailing_silence_s = trailing_silence_s
        self._max_utterance_s = max_utterance_s
        self._speech_level = speech_level
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._audio_queue: Optional[Queue[AudioFrame | None]] = None
        self._on_event: Optional[EventCallback] = None

    @property
    def language(self) -> str:
        return self._language

    def set_language(self, language: str) -> None:
        self._language = language

    def start(self, audio_queue: Queue[AudioFrame | None], on_event: EventCallback) -> None:
        thread = self._thread
        if thread and thread.is_alive():
            if not self._stop_event.is_set():
                return
            if thread is not threading.current_thread():
                thread.join(timeout=0.5)
        self._audio_queue = audio_queue
        self._on_event = on_event
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._worker,
            args=(audio_queue, on_event, self._stop_event),
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=0.5)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _worker(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: EventCallback,
        stop_event: threading.Event,
    ) -> None:
        """Collect one utterance, recognise it, then report ``end``."""

        def emit(event: RecognitionEvent) -> None:
            if not stop_event.is_set():
                on_event(event)

        emit(RecognitionEvent(kind=RecognitionKind.START.value))
        captured = self._capture(audio_queue, stop_event)
        if captured is None:
            emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, code=NO_SPEECH))
        elif not stop_event.is_set():
            pcm, sample_rate, channels = captured
            try:
                self._recognize(pcm, sample_rate, channels, emit)
            except Exception as exc:
                logger.exception("Recognition failed")
                emit(to_error_event(exc))
        emit(RecognitionEvent(kind=RecognitionKind.END.value))

    def _capture(
        self,
        audio_queue: Queue[AudioFrame | None],
        stop_event: threading.Event,
    ) -> Optional[tuple[bytes, int, int]]:
        """Consume frames until the utterance ends; None when nothing was said."""
        pcm = bytearray()
        sample_rate = 16000
        channels = 1
        heard_speech = False
        elapsed_s = 0.0
        silence_s = 0.0

        while not stop_event.is_set():
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                continue
            if frame is None:  # Sentinel
                break
            pcm.extend(frame.pcm16_bytes)
            sample_rate = frame.sample_rate
            channels = frame.channels

            duration = _frame_duration_s(frame)
            elapsed_s += duration
            if frame_level(frame) >= self._speech_level:
                heard_speech = True
                silence_s = 0.0
            else:
                silence_s += duration

            if heard_speech and silence_s >= self._trailing_silence_s:
                break
            if not heard_speech and elapsed_s >= self._no_speech_timeout_s:
                return None
            if elapsed_s >= self._max_utterance_s:
                break

        if not heard_speech or not pcm:
            return None
        return bytes(pcm), sample_rate, channels

    def _recognize(
        self,
        pcm: bytes,
        sample_rate: int,
        channels: int,
        emit: EventCallback,
    ) -> None:
        raise NotImplementedError


class GoogleRecognizerAdapter(_EndpointingRecognizer):
    def __init__(self, language: str = "en-US", api_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(language=language, **kwargs)
        self._api_key = api_key or None

    def _recognize(
        self,
        pcm: bytes,
        sample_rate: int,
        channels: int,
        emit: EventCallback,
    ) -> None:
        if sr is None:
            emit(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=ASR_PROTOCOL_ERROR,
                    message="SpeechRecognition is not installed",
                )
            )
            return

        audio = sr.AudioData(pcm, sample_rate, 2)
        try:
            response = sr.Recognizer().recognize_google(
                audio,
                key=self._api_key,
                language=self._language,
                show_all=True,
            )
        except sr.RequestError as exc:
            emit(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=NETWORK_ERROR,
                    message=str(exc),
                )
            )
            return

        alternatives = self._extract_alternatives(response)
        if not alternatives:
            emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, code=NO_SPEECH))
            return
        best = alternatives[0]
        emit(
            RecognitionEvent(
                kind=RecognitionKind.RESULT.value,
                text=best.text,
                confidence=best.confidence,
                alternatives=alternatives,
                is_final=True,
            )
        )

    def _extract_alternatives(self, response: object) -> list[Alternative]:
        """Pull (transcript, confidence) pairs from a ``show_all`` response."""
        if not isinstance(response, dict):
            return []
        alternatives = []
        for entry in response.get("alternative", []):
            if not isinstance(entry, dict) or not entry.get("transcript"):
                continue
            alternatives.append(
                Alternative(
                    text=str(entry["transcript"]),
                    confidence=float(entry.get("confidence", 0.0)),
                )
            )
        return alternatives


class DashscopeRecognizerAdapter(_EndpointingRecognizer):
    def __init__(
        self,
        api_key: str,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        language: str = "en-US",
        **kwargs: Any,
    ) -> None:
        super().__init__(language=language, **kwargs)
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s

    def _recognize(
        self,
        pcm: bytes,
        sample_rate: int,
        channels: int,
        emit: EventCallback,
    ) -> None:
        if dashscope is None:
            emit(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=ASR_PROTOCOL_ERROR,
                    message="dashscope is not installed",
                )
            )
            return

        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            emit(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=AUTH_FAILED,
                    message="No API key configured",
                )
            )
            return

        wav_base64 = _pcm_to_wav_base64(pcm, sample_rate, channels)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_base64}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False, "language": self._language.split("-")[0]},
                stream=True,
                timeout=self._request_timeout_s,
            )
        except Exception as exc:
            emit(to_error_event(exc))
            return

        latest_text = ""
        try:
            for chunk in response:
                if self._stop_event.is_set():
                    return
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
                    emit(
                        RecognitionEvent(
                            kind=RecognitionKind.PARTIAL.value,
                            text=text,
                            is_final=False,
                        )
                    )
        except Exception as exc:
            emit(to_error_event(exc))
            return

        if not latest_text.strip():
            emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, code=NO_SPEECH))
            return
        emit(
            RecognitionEvent(
                kind=RecognitionKind.RESULT.value,
                text=latest_text,
                confidence=1.0,
                alternatives=[Alternative(latest_text, 1.0)],
                is_final=True,
            )
        )

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            output = chunk.get("output", {})
            choices = output.get("choices", [])
            if not choices:
                return ""
            message = choices[0].get("message", {})
            content = message.get("content", [])
            if not content:
                return ""
            value = content[0]
            if isinstance(value, dict):
                return str(value.get("text", ""))
        return ""
