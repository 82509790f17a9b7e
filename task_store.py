"""In-memory task list."""

from __future__ import annotations

import secrets
import threading
from datetime import datetime
from typing import Optional

from models import Priority, Task


def _new_id() -> str:
    return secrets.token_urlsafe(15)


class InMemoryTaskStore:
    def __init__(self, tasks: Optional[list[Task]] = None) -> None:
        self._tasks: list[Task] = list(tasks or [])
        self._lock = threading.Lock()

    def create(
        self,
        title: str,
        priority: Priority = Priority.LOW,
        category: Optional[str] = None,
    ) -> Task:
        task = Task(id=_new_id(), text=title.strip(), priority=priority, category=category)
        with self._lock:
            self._tasks.insert(0, task)
        return task

    def toggle_complete(self, task_id: str) -> Task:
        with self._lock:
            task = self._find(task_id)
            task.completed = not task.completed
            task.completed_at = datetime.now() if task.completed else None
            return task

    def complete(self, task_id: str) -> Task:
        with self._lock:
            task = self._find(task_id)
            task.completed = True
            task.completed_at = datetime.now()
            return task

    def delete(self, task_id: str) -> Task:
        with self._lock:
            task = self._find(task_id)
            self._tasks.remove(task)
            return task

    def clear_all(self) -> None:
        with self._lock:
            self._tasks.clear()

    def list_active(self) -> list[Task]:
        with self._lock:
            return [t for t in self._tasks if not t.completed]

    def list_all(self) -> list[Task]:
        with self._lock:
            return list(self._tasks)

    def _find(self, task_id: str) -> Task:
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise KeyError(task_id)
