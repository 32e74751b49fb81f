"""Task API routes (task service).

Learn: These routes are the HTTP interface to TaskService. Every route
receives the CurrentIdentity produced by the authorization gateway and
passes it straight into the service — the owner id never comes from
the request body or the URL.

Key patterns:
- POST for creation, PUT for updates (only provided fields change)
- Query param for filtering (status)
- 404 for both "no such task" and "not your task"
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.dependencies import CurrentIdentity, get_current_user
from taskgate.db.engine import get_db
from taskgate.errors import NotFound
from taskgate.schemas.task import TaskCreate, TaskRead, TaskUpdate
from taskgate.services.task_service import TaskService

router = APIRouter(prefix="/tasks")


def _task_svc(request: Request, db: AsyncSession = Depends(get_db)) -> TaskService:
    return TaskService(
        db, max_description_length=request.app.state.settings.max_description_length
    )


@router.get("", response_model=list[TaskRead])
async def list_tasks(
    status: Optional[str] = Query(None, description="Filter by status"),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TaskService = Depends(_task_svc),
):
    """List the caller's tasks, newest first."""
    return await svc.list_tasks(identity, status=status)


@router.post("", response_model=TaskRead, status_code=201)
async def create_task(
    body: TaskCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TaskService = Depends(_task_svc),
):
    """Create a new task in 'pending' status."""
    return await svc.create_task(
        identity,
        title=body.title,
        description=body.description,
        priority=body.priority,
    )


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TaskService = Depends(_task_svc),
):
    """Get a single task by ID."""
    task = await svc.get_task(identity, task_id)
    if not task:
        raise NotFound("Task not found")
    return task


@router.put("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: int,
    body: TaskUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TaskService = Depends(_task_svc),
):
    """Update a task's title, description, status or priority."""
    task = await svc.update_task(
        identity,
        task_id,
        title=body.title,
        description=body.description,
        status=body.status,
        priority=body.priority,
    )
    if not task:
        raise NotFound("Task not found")
    return task


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TaskService = Depends(_task_svc),
):
    """Delete a task."""
    if not await svc.delete_task(identity, task_id):
        raise NotFound("Task not found")
    return {"message": "Task deleted successfully"}
