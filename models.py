"""Core data models for the app."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    AWAITING_RETRY = "AWAITING_RETRY"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RecognitionKind(str, Enum):
    START = "start"
    PARTIAL = "partial"
    RESULT = "result"
    ERROR = "error"
    END = "end"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CommandAction(str, Enum):
    ADD = "add"
    COMPLETE = "complete"
    DELETE = "delete"
    CLEAR = "clear"
    UNKNOWN = "unknown"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class Alternative:
    text: str
    confidence: float = 0.0


@dataclass
class RecognitionEvent:
    kind: str
    text: str = ""
    confidence: float = 0.0
    alternatives: list[Alternative] = field(default_factory=list)
    is_final: bool = True
    code: str = ""
    message: str = ""


@dataclass(frozen=True)
class TranscriptResult:
    text: str
    confidence: float
    is_final: bool = True
    language: str = "en-US"
    alternatives: tuple[Alternative, ...] = ()


@dataclass(frozen=True)
class VoiceActivitySample:
    level: float = 0.0
    voice_detected: bool = False
    frequency: float = 0.0
    confidence: float = 0.0

    @classmethod
    def silent(cls) -> "VoiceActivitySample":
        return cls()


@dataclass
class RecognitionSession:
    session_id: int
    state: SessionState = SessionState.IDLE
    started_at: int = field(default_factory=lambda: int(time.time() * 1000))
    retry_count: int = 0
    threshold: float = 0.5


@dataclass
class VoiceCommand:
    action: CommandAction
    text: Optional[str] = None
    priority: Optional[Priority] = None
    category: Optional[str] = None
    index: Optional[int] = None


@dataclass
class Task:
    id: str
    text: str
    completed: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    priority: Priority = Priority.LOW
    category: Optional[str] = None


@dataclass
class ExecutionResult:
    success: bool
    message: str
    task: Optional[Task] = None
