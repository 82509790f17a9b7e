"""Recognition analytics and the adaptive acceptance threshold."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

WINDOW_SIZE = 10
ADAPTIVE_MIN = 0.3
ADAPTIVE_MAX = 0.7
PREFERENCE_MIN = 0.1
PREFERENCE_MAX = 1.0
DEFAULT_THRESHOLD = 0.5


@dataclass
class RecognitionAnalytics:
    """Process-wide recognition statistics.

    Created once at startup and handed to the controller; nothing resets it
    afterwards.
    """

    total_attempts: int = 0
    successful_recognitions: int = 0
    average_confidence: float = 0.0
    error_rate: float = 0.0
    last_error: str = ""
    recent_confidences: deque = field(default_factory=lambda: deque(maxlen=WINDOW_SIZE))


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


class AdaptiveConfidenceController:
    def __init__(
        self,
        analytics: RecognitionAnalytics | None = None,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self._analytics = analytics if analytics is not None else RecognitionAnalytics()
        self._lock = threading.Lock()
        self._threshold = _clamp(threshold, PREFERENCE_MIN, PREFERENCE_MAX)

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def analytics(self) -> RecognitionAnalytics:
        return self._analytics

    def set_threshold(self, value: float) -> float:
        """Set the threshold from a user preference."""
        with self._lock:
            self._threshold = _clamp(value, PREFERENCE_MIN, PREFERENCE_MAX)
            return self._threshold

    def set_sensitivity(self, sensitivity: float) -> float:
        """Higher sensitivity accepts less confident transcripts."""
        return self.set_threshold(1.0 - _clamp(sensitivity, 0.0, 1.0))

    def accepts(self, confidence: float, threshold: float | None = None) -> bool:
        bar = self._threshold if threshold is None else threshold
        return confidence > bar

    def record_outcome(self, success: bool, confidence: float = 0.0, error_code: str = "") -> None:
        with self._lock:
            stats = self._analytics
            previous_error_rate = stats.error_rate

            stats.total_attempts += 1
            if success:
                stats.successful_recognitions += 1
                stats.recent_confidences.append(_clamp(confidence, 0.0, 1.0))
                stats.average_confidence = sum(stats.recent_confidences) / len(
                    stats.recent_confidences
                )
            else:
                stats.last_error = error_code
            failures = stats.total_attempts - stats.successful_recognitions
            stats.error_rate = failures / stats.total_attempts * 100

            if success:
                self._adapt(stats.average_confidence, previous_error_rate)

    def snapshot(self) -> RecognitionAnalytics:
        with self._lock:
            stats = self._analytics
            return RecognitionAnalytics(
                total_attempts=stats.total_attempts,
                successful_recognitions=stats.successful_recognitions,
                average_confidence=stats.average_confidence,
                error_rate=stats.error_rate,
                last_error=stats.last_error,
                recent_confidences=deque(stats.recent_confidences, maxlen=WINDOW_SIZE),
            )

    def _adapt(self, average: float, previous_error_rate: float) -> None:
        if average > 0.8 and previous_error_rate < 10:
            target = max(ADAPTIVE_MIN, average - 0.2)
        elif average < 0.6 or previous_error_rate > 20:
            target = min(ADAPTIVE_MAX, average + 0.1)
        else:
            return
        new_threshold = _clamp(target, ADAPTIVE_MIN, ADAPTIVE_MAX)
        if new_threshold != self._threshold:
            logger.debug(
                "Threshold %.2f -> %.2f (avg %.2f, error rate %.1f%%)",
                self._threshold,
                new_threshold,
                average,
                previous_error_rate,
            )
        self._threshold = new_threshold
