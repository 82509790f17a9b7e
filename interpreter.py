"""Deterministic transcript -> VoiceCommand grammar.

Families are tried in a fixed order (add, complete, delete, clear) and the
first pattern that matches wins.  Nothing here raises: anything the grammar
does not cover becomes an UNKNOWN command carrying the raw transcript.
"""

from __future__ import annotations

import re
from typing import Optional

from models import CommandAction, Priority, VoiceCommand

COMMAND_KEYWORDS = ("add", "create", "new", "todo", "complete", "done", "delete", "remove", "clear")

_ADD_PATTERNS = [
    re.compile(r"^(?:hey|okay|ok|please|can you) add (.+)$"),
    re.compile(r"^add (.+)$"),
    re.compile(r"^create (.+)$"),
    re.compile(r"^new (.+)$"),
    re.compile(r"^todo (.+)$"),
    re.compile(r"^remind me to (.+)$"),
    re.compile(r"^i need to (.+)$"),
]

# The "task N" forms go first so spoken ordinals are not swallowed by the
# generic capture as the literal text "task 2".
_COMPLETE_PATTERNS = [
    re.compile(r"^complete task (\d+)$"),
    re.compile(r"^done with task (\d+)$"),
    re.compile(r"^complete (.+)$"),
    re.compile(r"^done (.+)$"),
    re.compile(r"^finish (.+)$"),
    re.compile(r"^mark (.+) as (?:done|complete)$"),
]

_DELETE_PATTERNS = [
    re.compile(r"^delete task (\d+)$"),
    re.compile(r"^remove task (\d+)$"),
    re.compile(r"^delete (.+)$"),
    re.compile(r"^remove (.+)$"),
    re.compile(r"^cancel (.+)$"),
]

_CLEAR_PHRASES = ("clear all", "delete all", "remove all")

_HIGH_PRIORITY = ("urgent", "high priority", "important")
_MEDIUM_PRIORITY = ("medium priority", "normal")

_CATEGORY_PATTERNS = [
    re.compile(r"(?:in|for|under) (\w+) category"),
    re.compile(r"categorize as (\w+)"),
    re.compile(r"tag (\w+)"),
]

_CLEANUP_PATTERNS = [
    re.compile(r"\b(?:urgent|high priority|important|medium priority|normal|low priority)\b"),
    re.compile(r"\b(?:in|for|under) \w+ category\b"),
    re.compile(r"\bcategorize as \w+\b"),
    re.compile(r"\btag \w+\b"),
]

_KEYWORD_RE = re.compile(r"\b(?:%s)\b" % "|".join(COMMAND_KEYWORDS))


def parse_voice_command(transcript: str) -> VoiceCommand:
    text = (transcript or "").lower().strip()

    for pattern in _ADD_PATTERNS:
        match = pattern.match(text)
        if match:
            return _add_command(match.group(1))

    for pattern in _COMPLETE_PATTERNS:
        match = pattern.match(text)
        if match:
            return _targeted_command(CommandAction.COMPLETE, match.group(1))

    for pattern in _DELETE_PATTERNS:
        match = pattern.match(text)
        if match:
            return _targeted_command(CommandAction.DELETE, match.group(1))

    if any(phrase in text for phrase in _CLEAR_PHRASES):
        return VoiceCommand(action=CommandAction.CLEAR)

    return VoiceCommand(action=CommandAction.UNKNOWN, text=transcript or "")


def contains_command_keyword(text: str) -> bool:
    return bool(_KEYWORD_RE.search((text or "").lower()))


def extract_priority(text: str) -> Priority:
    if any(phrase in text for phrase in _HIGH_PRIORITY):
        return Priority.HIGH
    if any(phrase in text for phrase in _MEDIUM_PRIORITY):
        return Priority.MEDIUM
    return Priority.LOW


def extract_category(text: str) -> Optional[str]:
    for pattern in _CATEGORY_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def clean_task_text(text: str) -> str:
    for pattern in _CLEANUP_PATTERNS:
        text = pattern.sub("", text)
    return " ".join(text.split())


def voice_command_examples() -> list[str]:
    return [
        "Add [task]",
        "Create [task]",
        "New [task]",
        "Todo [task]",
        "Remind me to [task]",
        "Complete [task]",
        "Done [task]",
        "Complete task [number]",
        "Delete [task]",
        "Remove [task]",
        "Delete task [number]",
        "Clear all",
    ]


def _add_command(task_text: str) -> VoiceCommand:
    task_text = task_text.strip()
    title = clean_task_text(task_text) or task_text
    return VoiceCommand(
        action=CommandAction.ADD,
        text=title,
        priority=extract_priority(task_text),
        category=extract_category(task_text),
    )


def _targeted_command(action: CommandAction, reference: str) -> VoiceCommand:
    reference = reference.strip()
    if reference.isdecimal():
        return VoiceCommand(action=action, index=int(reference) - 1)
    return VoiceCommand(action=action, text=reference)
