"""Microphone activity monitor.

Owns the capture device for the duration of a listening attempt.  Every audio
block is summarised into a ``VoiceActivitySample`` (level, voice detected,
dominant frequency, confidence) for the UI and forwarded as an ``AudioFrame``
to the recognizer's queue, so only one capture stream is ever open.
"""

from __future__ import annotations

import logging
import threading
import time
from queue import Full, Queue
from typing import Any, Callable, Optional

from errors import NO_MICROPHONE, PERMISSION_DENIED, AudioUnavailable
from models import AudioFrame, VoiceActivitySample

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

FFT_SIZE = 2048
SMOOTHING = 0.3
VOICE_FLOOR = 0.01
FRAMES_PER_SECOND = 60

SampleCallback = Callable[[VoiceActivitySample], None]


def summarize_window(
    window: Any,
    sample_rate: int,
    previous_spectrum: Any = None,
    smoothing: float = SMOOTHING,
) -> tuple[VoiceActivitySample, Any]:
    """Summarise a normalised [-1, 1] window of ``FFT_SIZE`` samples.

    Returns the activity sample and the smoothed magnitude spectrum, which the
    caller feeds back in as ``previous_spectrum`` on the next block.
    """
    samples = np.asarray(window, dtype=np.float64)
    if samples.size < FFT_SIZE:
        samples = np.concatenate((np.zeros(FFT_SIZE - samples.size), samples))
    samples = samples[-FFT_SIZE:]

    rms = float(np.sqrt(np.mean(samples * samples)))
    level = min(rms * 10.0, 1.0)

    magnitude = np.abs(np.fft.rfft(samples * np.blackman(FFT_SIZE))) / FFT_SIZE
    if previous_spectrum is not None and np.shape(previous_spectrum) == magnitude.shape:
        spectrum = smoothing * previous_spectrum + (1.0 - smoothing) * magnitude
    else:
        spectrum = magnitude

    frequency = int(np.argmax(spectrum)) * sample_rate / FFT_SIZE

    sample = VoiceActivitySample(
        level=level,
        voice_detected=level > VOICE_FLOOR,
        frequency=float(frequency),
        confidence=min(level * 2.0, 1.0),
    )
    return sample, spectrum


class SoundDeviceActivityMonitor:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        frames_per_second: int = FRAMES_PER_SECOND,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_second = frames_per_second
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None
        self._on_sample: Optional[SampleCallback] = None
        self._window: Any = None
        self._spectrum: Any = None
        self._latest = VoiceActivitySample.silent()

    @property
    def latest(self) -> VoiceActivitySample:
        return self._latest

    @property
    def running(self) -> bool:
        return self._running

    def __enter__(self) -> "SoundDeviceActivityMonitor":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(
        self,
        audio_queue: Optional[Queue[AudioFrame | None]] = None,
        on_sample: Optional[SampleCallback] = None,
    ) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None or np is None:
                raise AudioUnavailable("sounddevice is not installed")
            self._audio_queue = audio_queue
            self._on_sample = on_sample
            self._window = np.zeros(FFT_SIZE, dtype=np.float64)
            self._spectrum = None
            blocksize = max(1, int(self.sample_rate / self.frames_per_second))
            self._stream = _open_input_stream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            self._running = True
            logger.debug("Microphone opened (%d Hz, block %d)", self.sample_rate, blocksize)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                self._emit_sentinel_if_needed()
                return
            self._running = False
            stream, self._stream = self._stream, None
            try:
                if stream is not None:
                    stream.stop()
                    stream.close()
            finally:
                self._latest = VoiceActivitySample.silent()
                self._spectrum = None
                self._emit_sentinel_if_needed()
                self._audio_queue = None
                logger.debug("Microphone released")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            return
        pcm = np.asarray(indata, dtype=np.int16)
        if self._audio_queue is not None:
            frame = AudioFrame(
                pcm16_bytes=pcm.tobytes(),
                sample_rate=self.sample_rate,
                channels=self.channels,
                timestamp_ms=int(time.time() * 1000),
            )
            try:
                self._audio_queue.put_nowait(frame)
            except Full:
                self.dropped_chunks += 1

        block = pcm.astype(np.float64) / 32768.0
        if block.ndim > 1:
            block = block.mean(axis=1)
        self._window = np.concatenate((self._window, block))[-FFT_SIZE:]
        self._latest, self._spectrum = summarize_window(
            self._window, self.sample_rate, self._spectrum
        )
        if self._on_sample is not None:
            try:
                self._on_sample(self._latest)
            except Exception:
                logger.exception("Activity sample callback failed")

    def _emit_sentinel_if_needed(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            pass


def _open_input_stream(**kwargs: Any) -> Any:
    """Open and start an input stream, closing it again if starting fails."""
    try:
        stream = sd.InputStream(**kwargs)
    except Exception as exc:
        raise _audio_unavailable(exc) from exc
    try:
        stream.start()
    except Exception as exc:
        stream.close()
        raise _audio_unavailable(exc) from exc
    return stream


def _audio_unavailable(exc: Exception) -> AudioUnavailable:
    message = str(exc)
    low = message.lower()
    if "permission" in low or "not allowed" in low or "denied" in low:
        return AudioUnavailable(message, code=PERMISSION_DENIED)
    return AudioUnavailable(message, code=NO_MICROPHONE)
