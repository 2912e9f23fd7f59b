"""
In-memory status of detached history uploads.

Lifecycle: create (PENDING) -> start (PROCESSING) -> set_total / advance
-> complete (COMPLETED) | fail (ERROR).

Statuses live only as long as the process; the data an upload writes is
committed chunk by chunk and does not depend on this map. One tracker is
owned by the application (app.state) and handed to routes by dependency.
"""
from __future__ import annotations

import enum
import threading
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from fastapi import Request


class UploadStatus(str, enum.Enum):
    pending = "PENDING"
    processing = "PROCESSING"
    completed = "COMPLETED"
    error = "ERROR"


@dataclass
class UploadTask:
    id: str
    clan_id: int
    status: UploadStatus = UploadStatus.pending
    progress: int = 0
    total: int = 0
    result: Optional[dict[str, Any]] = field(default=None)
    error: Optional[str] = None


class TaskTracker:
    def __init__(self) -> None:
        self._tasks: dict[str, UploadTask] = {}
        self._lock = threading.Lock()

    def create(self, clan_id: int) -> UploadTask:
        task = UploadTask(id=str(uuid.uuid4()), clan_id=clan_id)
        with self._lock:
            self._tasks[task.id] = task
            return replace(task)

    def get(self, task_id: str) -> Optional[UploadTask]:
        """Return a copy of the task, or None if unknown."""
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def _update(self, task_id: str, **changes: Any) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return
            for key, value in changes.items():
                setattr(task, key, value)

    def start(self, task_id: str) -> None:
        self._update(task_id, status=UploadStatus.processing)

    def set_total(self, task_id: str, total: int) -> None:
        self._update(task_id, total=total)

    def advance(self, task_id: str, processed: int) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            # progress never moves backwards
            if task is not None and processed > task.progress:
                task.progress = processed

    def complete(self, task_id: str, result: dict[str, Any]) -> None:
        self._update(task_id, status=UploadStatus.completed, result=result)

    def fail(self, task_id: str, error: str, processed: Optional[int] = None) -> None:
        if processed is not None:
            self.advance(task_id, processed)
        self._update(task_id, status=UploadStatus.error, error=error)


def get_task_tracker(request: Request) -> TaskTracker:
    """FastAPI dependency: the application's tracker."""
    return request.app.state.task_tracker
