"""Shared error codes and user-facing messages."""

from __future__ import annotations

NO_MICROPHONE = "NO_MICROPHONE"
PERMISSION_DENIED = "PERMISSION_DENIED"
NO_SPEECH = "NO_SPEECH"
NO_SPEECH_EXHAUSTED = "NO_SPEECH_EXHAUSTED"
NETWORK_ERROR = "NETWORK_ERROR"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
TIMEOUT = "TIMEOUT"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

ERROR_MESSAGES = {
    NO_MICROPHONE: "Microphone access denied. Please allow microphone access.",
    PERMISSION_DENIED: "Microphone access not allowed. Please check system settings.",
    NO_SPEECH: "No speech detected. Please try again.",
    NO_SPEECH_EXHAUSTED: "No speech detected after several tries. Please try again.",
    NETWORK_ERROR: "Network failed, please retry.",
    SERVICE_UNAVAILABLE: "Speech service is unavailable, please retry later.",
    TIMEOUT: "Listening timed out. Please try again.",
    AUTH_FAILED: "API key is invalid.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
    UNKNOWN_ERROR: "Speech recognition failed.",
}

# Raw recognizer error names -> error codes.
_RAW_ERROR_CODES = {
    "no-speech": NO_SPEECH,
    "mic-denied": NO_MICROPHONE,
    "audio-capture": NO_MICROPHONE,
    "permission-denied": PERMISSION_DENIED,
    "not-allowed": PERMISSION_DENIED,
    "network": NETWORK_ERROR,
    "service-unavailable": SERVICE_UNAVAILABLE,
    "service-not-allowed": SERVICE_UNAVAILABLE,
    "auth-failed": AUTH_FAILED,
    "bad-response": ASR_PROTOCOL_ERROR,
}


def classify_recognizer_error(raw: str) -> str:
    """Map a raw recognizer error name to one of the codes above."""
    key = (raw or "").strip()
    if key in ERROR_MESSAGES:
        return key
    return _RAW_ERROR_CODES.get(key.lower(), UNKNOWN_ERROR)


def message_for(code: str) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[UNKNOWN_ERROR])


class AudioUnavailable(RuntimeError):
    """Raised when the microphone cannot be opened."""

    def __init__(self, message: str, code: str = NO_MICROPHONE) -> None:
        super().__init__(message)
        self.code = code
