"""Task service — CRUD over tasks, scoped to the calling identity.

Learn: every operation takes the verified identity first. Ownership is
checked by ONE predicate (_owned_by) applied in the WHERE clause before
any read or mutation, so a task owned by someone else is
indistinguishable from a task that doesn't exist. Callers get None and
turn it into a 404 — no 403, so ids of other users' tasks don't leak.

All filter values (status, ids) are bound parameters.
"""

from typing import Optional

import structlog
from sqlalchemy import ColumnElement, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.dependencies import CurrentIdentity
from taskgate.db.models import TASK_PRIORITIES, TASK_STATUSES, Task, utcnow
from taskgate.errors import ValidationError

logger = structlog.get_logger()

DEFAULT_MAX_DESCRIPTION = 10_000

# Largest id a 64-bit INTEGER column can hold
MAX_TASK_ID = 2**63 - 1


def _owned_by(identity: CurrentIdentity) -> ColumnElement[bool]:
    """The authorization predicate: task.user_id == identity.user_id."""
    return Task.user_id == identity.user_id


class TaskService:
    """Business logic for task CRUD."""

    def __init__(
        self,
        db: AsyncSession,
        max_description_length: int = DEFAULT_MAX_DESCRIPTION,
    ):
        self.db = db
        self.max_description_length = max_description_length

    # ─── Validation ──────────────────────────────────────

    def _check_fields(
        self,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> None:
        if title is not None and not (1 <= len(title) <= 255):
            raise ValidationError("title must be 1-255 characters")
        if description is not None and len(description) > self.max_description_length:
            raise ValidationError(
                f"description must be at most {self.max_description_length} characters"
            )
        if status is not None and status not in TASK_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(TASK_STATUSES)}")
        if priority is not None and priority not in TASK_PRIORITIES:
            raise ValidationError(f"priority must be one of {', '.join(TASK_PRIORITIES)}")

    # ─── Create ──────────────────────────────────────────

    async def create_task(
        self,
        identity: CurrentIdentity,
        title: str,
        description: str = "",
        priority: str = "medium",
    ) -> Task:
        """Create a task in 'pending' status owned by the caller."""
        self._check_fields(title=title, description=description, priority=priority)
        now = utcnow()
        task = Task(
            title=title,
            description=description,
            priority=priority,
            status="pending",
            user_id=identity.user_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        await self.db.commit()
        logger.info("task.created", task_id=task.id, user_id=identity.user_id)
        return task

    # ─── Read ────────────────────────────────────────────

    async def get_task(self, identity: CurrentIdentity, task_id: int) -> Optional[Task]:
        if not 1 <= task_id <= MAX_TASK_ID:
            return None
        result = await self.db.execute(
            select(Task).where(and_(Task.id == task_id, _owned_by(identity)))
        )
        return result.scalars().first()

    async def list_tasks(
        self,
        identity: CurrentIdentity,
        status: Optional[str] = None,
    ) -> list[Task]:
        """List the caller's tasks, newest first, optionally by status."""
        query = (
            select(Task)
            .where(_owned_by(identity))
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        if status:
            query = query.where(Task.status == status)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ─── Update ──────────────────────────────────────────

    async def update_task(
        self,
        identity: CurrentIdentity,
        task_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> Optional[Task]:
        """Update the given fields of one of the caller's tasks."""
        self._check_fields(
            title=title, description=description, status=status, priority=priority
        )
        task = await self.get_task(identity, task_id)
        if not task:
            return None

        changes = {}
        if title is not None:
            task.title = title
            changes["title"] = title
        if description is not None:
            task.description = description
            changes["description"] = description
        if status is not None:
            task.status = status
            changes["status"] = status
        if priority is not None:
            task.priority = priority
            changes["priority"] = priority

        if changes:
            task.updated_at = utcnow()
            await self.db.commit()
            logger.info(
                "task.updated",
                task_id=task_id,
                user_id=identity.user_id,
                fields=sorted(changes),
            )
        return task

    # ─── Delete ──────────────────────────────────────────

    async def delete_task(self, identity: CurrentIdentity, task_id: int) -> bool:
        """Delete one of the caller's tasks. Returns False if none matched."""
        task = await self.get_task(identity, task_id)
        if not task:
            return False

        await self.db.delete(task)
        await self.db.commit()
        logger.info("task.deleted", task_id=task_id, user_id=identity.user_id)
        return True
