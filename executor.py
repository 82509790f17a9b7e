"""Apply interpreted voice commands to the task list."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from interfaces import SpeechOutput, TaskStore
from models import CommandAction, ExecutionResult, Priority, Task, VoiceCommand

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found"
NOT_UNDERSTOOD = (
    "Sorry, I did not understand that command. "
    "Try saying add, complete, delete, or clear all."
)
PROCESSING_ERROR = "Sorry, there was an error processing your command."


def task_summary(tasks: Sequence[Task]) -> str:
    total = len(tasks)
    completed = sum(1 for t in tasks if t.completed)
    pending = total - completed

    if total == 0:
        return "You have no tasks. Great job staying on top of things!"
    if pending == 0:
        return f"All {total} tasks completed! You're crushing it!"
    plural = "" if pending == 1 else "s"
    return f"You have {pending} task{plural} remaining out of {total} total."


class TaskCommandExecutor:
    def __init__(
        self,
        store: TaskStore,
        speech: Optional[SpeechOutput] = None,
        voice_rate: float = 1.0,
        on_result: Optional[Callable[[ExecutionResult], None]] = None,
    ) -> None:
        self._store = store
        self._speech = speech
        self.voice_rate = voice_rate
        self._on_result = on_result

    def execute(self, command: VoiceCommand) -> ExecutionResult:
        try:
            result = self._dispatch(command)
        except Exception:
            logger.exception("Failed to execute %s command", command.action.value)
            result = ExecutionResult(success=False, message=PROCESSING_ERROR)
        self._say(result.message)
        if self._on_result:
            self._on_result(result)
        return result

    def speak_summary(self, tasks: Sequence[Task]) -> str:
        summary = task_summary(tasks)
        self._say(summary)
        return summary

    def _dispatch(self, command: VoiceCommand) -> ExecutionResult:
        action = command.action
        if action == CommandAction.ADD and command.text:
            task = self._store.create(
                command.text, command.priority or Priority.LOW, command.category
            )
            return ExecutionResult(success=True, message=f"Added task: {task.text}", task=task)

        if action in (CommandAction.COMPLETE, CommandAction.DELETE):
            task = self._resolve(command)
            if task is None:
                logger.info("No task matches %s", command)
                return ExecutionResult(success=False, message=TASK_NOT_FOUND)
            if action == CommandAction.COMPLETE:
                task = self._store.complete(task.id)
                return ExecutionResult(success=True, message=f"Completed task: {task.text}", task=task)
            task = self._store.delete(task.id)
            return ExecutionResult(success=True, message=f"Deleted task: {task.text}", task=task)

        if action == CommandAction.CLEAR:
            self._store.clear_all()
            return ExecutionResult(success=True, message="All tasks cleared")

        return ExecutionResult(success=False, message=NOT_UNDERSTOOD)

    def _resolve(self, command: VoiceCommand) -> Optional[Task]:
        # Spoken numbers count incomplete tasks only; text matches any task.
        if command.index is not None:
            active = self._store.list_active()
            if 0 <= command.index < len(active):
                return active[command.index]
            return None
        if command.text:
            needle = command.text.lower()
            for task in self._store.list_all():
                if needle in task.text.lower():
                    return task
        return None

    def _say(self, text: str) -> None:
        if self._speech is None:
            return
        try:
            self._speech.speak(text, self.voice_rate)
        except Exception:
            logger.exception("Speech output failed")
