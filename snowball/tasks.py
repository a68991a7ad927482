#!/usr/bin/env python3
"""
Task status API routes
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from snowball.auth import require_user_id
from snowball.task_manager import TaskStatus, task_manager

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


class TaskResponse(BaseModel):
    task_id: str
    task_type: str
    status: TaskStatus
    progress: int
    message: str
    created_at: str
    updated_at: str
    metadata: Dict[str, Any]
    result: Optional[Any] = None
    error: Optional[str] = None


def _owned_task(task_id: str, request: Request) -> dict:
    task = task_manager.get_task_for_user(task_id, require_user_id(request))
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task_status(task_id: str, request: Request):
    """Get status of a background task"""
    return _owned_task(task_id, request)


@router.delete("/{task_id}")
async def delete_task(task_id: str, request: Request):
    _owned_task(task_id, request)
    task_manager.delete_task(task_id)
    return {"success": True, "message": "Task deleted"}
