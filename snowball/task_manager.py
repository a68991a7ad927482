#!/usr/bin/env python3
"""
Background task tracking for long-running analyses
Tasks live in process memory and belong to the user who started them
"""

import threading
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskManager:
    """Singleton registry of background analysis tasks"""
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._tasks = {}
        return cls._instance

    def create_task(self, task_type: str, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Register a new pending task and return it"""
        now = datetime.utcnow().isoformat()
        task = {
            "task_id": f"{task_type}_{uuid.uuid4().hex[:12]}",
            "task_type": task_type,
            "user_id": user_id,
            "status": TaskStatus.PENDING,
            "progress": 0,
            "message": "Task created",
            "created_at": now,
            "updated_at": now,
            "metadata": metadata or {},
            "result": None,
            "error": None,
        }
        self._tasks[task["task_id"]] = task
        return task

    def update_task(
        self,
        task_id: str,
        status: Optional[TaskStatus] = None,
        progress: Optional[int] = None,
        message: Optional[str] = None,
        result: Optional[Any] = None,
        error: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        task = self._tasks.get(task_id)
        if task is None:
            return None

        if status is not None:
            task["status"] = status
        if progress is not None:
            task["progress"] = min(100, max(0, progress))
        if message is not None:
            task["message"] = message
        if result is not None:
            task["result"] = result
        if error is not None:
            task["error"] = error
            task["status"] = TaskStatus.FAILED

        task["updated_at"] = datetime.utcnow().isoformat()
        return task

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        return self._tasks.get(task_id)

    def get_task_for_user(self, task_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        task = self._tasks.get(task_id)
        if task is None or task["user_id"] != user_id:
            return None
        return task

    def delete_task(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)

    def cleanup_old_tasks(self, max_age_hours: int = 24) -> int:
        """Drop finished tasks not touched for `max_age_hours`"""
        cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
        stale = [
            task_id for task_id, task in self._tasks.items()
            if datetime.fromisoformat(task["updated_at"]) < cutoff
            and task["status"] in (TaskStatus.COMPLETED, TaskStatus.FAILED)
        ]
        for task_id in stale:
            del self._tasks[task_id]
        return len(stale)


# Global instance
task_manager = TaskManager()
