"""
HOMEBASE - Task Service
========================
Household task CRUD, assignment and statistics. Every query is scoped to
a group.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import (
    GroupMembership, MembershipStatus, Task, TaskCategory, TaskPriority, TaskStatus,
    utc_naive,
)

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

UPDATABLE_FIELDS = (
    "title", "description", "category", "priority", "status", "assigned_to",
    "due_date", "urgent", "estimated_minutes",
)


class TaskService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ============== CRUD ==============

    async def create_task(self, group_id: UUID, created_by: UUID, data: Dict[str, Any]) -> Task:
        """Create a task in `group_id`. New tasks always start pending."""
        assigned_to = data.get("assigned_to")
        if assigned_to:
            await self._require_active_member(group_id, assigned_to)

        task = Task(
            group_id=group_id,
            created_by=created_by,
            title=data["title"],
            description=data.get("description") or "",
            category=data["category"],
            priority=data.get("priority") or TaskPriority.MEDIUM,
            status=TaskStatus.PENDING,
            assigned_to=assigned_to,
            due_date=data.get("due_date"),
            urgent=data.get("urgent", False),
            estimated_minutes=data.get("estimated_minutes"),
        )
        self.db.add(task)
        await self.db.commit()

        logger.info("task_created", task_id=str(task.id), group_id=str(group_id), created_by=str(created_by))
        return task

    async def get_task(self, task_id: UUID, group_id: UUID) -> Optional[Task]:
        result = await self.db.execute(
            select(Task).where(Task.id == task_id, Task.group_id == group_id)
        )
        return result.scalar_one_or_none()

    async def list_group_tasks(
        self,
        group_id: UUID,
        status: Optional[TaskStatus] = None,
        category: Optional[TaskCategory] = None,
        priority: Optional[TaskPriority] = None,
        assigned_to: Optional[UUID] = None,
        urgent: Optional[bool] = None,
        completed: Optional[bool] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[Task]:
        """List a group's tasks, newest first."""
        query = select(Task).where(Task.group_id == group_id)
        query = self._apply_filters(query, status, category, priority, assigned_to, urgent, completed)
        return await self._page(query, limit, offset)

    async def list_assigned_tasks(
        self,
        member_id: UUID,
        group_id: Optional[UUID] = None,
        status: Optional[TaskStatus] = None,
        category: Optional[TaskCategory] = None,
        priority: Optional[TaskPriority] = None,
        urgent: Optional[bool] = None,
        completed: Optional[bool] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        group_ids: Optional[List[UUID]] = None,
    ) -> List[Task]:
        """
        Tasks assigned to a member, optionally within one group.

        `group_ids` restricts the result to groups the caller still belongs
        to; tasks in groups the member has left are not returned.
        """
        query = select(Task).where(Task.assigned_to == member_id)
        if group_id:
            query = query.where(Task.group_id == group_id)
        if group_ids is not None:
            query = query.where(Task.group_id.in_(group_ids))
        query = self._apply_filters(query, status, category, priority, None, urgent, completed)
        return await self._page(query, limit, offset)

    async def update_task(self, task_id: UUID, group_id: UUID, updates: Dict[str, Any]) -> Task:
        task = await self.get_task(task_id, group_id)
        if task is None:
            raise LookupError("Task not found")

        if updates.get("assigned_to"):
            await self._require_active_member(group_id, updates["assigned_to"])

        self._apply_updates(task, updates)
        await self.db.commit()

        logger.info("task_updated", task_id=str(task.id), fields=sorted(updates))
        return task

    async def assign_task(self, task_id: UUID, group_id: UUID, assignee_id: UUID) -> Task:
        task = await self.get_task(task_id, group_id)
        if task is None:
            raise LookupError("Task not found")

        await self._require_active_member(group_id, assignee_id)
        task.assigned_to = assignee_id
        await self.db.commit()

        logger.info("task_assigned", task_id=str(task.id), assigned_to=str(assignee_id))
        return task

    async def complete_task(self, task_id: UUID, group_id: UUID) -> Task:
        return await self.update_task(task_id, group_id, {"status": TaskStatus.COMPLETED})

    async def delete_task(self, task_id: UUID, group_id: UUID) -> bool:
        task = await self.get_task(task_id, group_id)
        if task is None:
            return False

        await self.db.delete(task)
        await self.db.commit()

        logger.info("task_deleted", task_id=str(task_id), group_id=str(group_id))
        return True

    async def bulk_update(self, group_id: UUID, task_ids: List[UUID], updates: Dict[str, Any]) -> List[Task]:
        """Apply the same updates to several tasks. All or nothing."""
        if not task_ids:
            raise ValueError("At least one task ID is required")

        result = await self.db.execute(
            select(Task).where(Task.id.in_(task_ids), Task.group_id == group_id)
        )
        tasks = list(result.scalars().all())
        missing = set(task_ids) - {t.id for t in tasks}
        if missing:
            raise LookupError(f"{len(missing)} task(s) not found in this group")

        if updates.get("assigned_to"):
            await self._require_active_member(group_id, updates["assigned_to"])

        for task in tasks:
            self._apply_updates(task, updates)
        await self.db.commit()

        logger.info("tasks_bulk_updated", group_id=str(group_id), count=len(tasks), fields=sorted(updates))
        return tasks

    # ============== STATISTICS ==============

    async def get_stats(self, group_id: UUID, now: Optional[datetime] = None) -> dict:
        now = utc_naive(now) or datetime.utcnow()
        result = await self.db.execute(
            select(Task.status, Task.due_date).where(Task.group_id == group_id)
        )
        rows = result.all()

        total = len(rows)
        completed = sum(1 for status, _ in rows if status == TaskStatus.COMPLETED)
        overdue = sum(
            1 for status, due in rows
            if status != TaskStatus.COMPLETED and due is not None and due < now
        )

        return {
            "total": total,
            "completed": completed,
            "pending": sum(1 for status, _ in rows if status == TaskStatus.PENDING),
            "in_progress": sum(1 for status, _ in rows if status == TaskStatus.IN_PROGRESS),
            "overdue": overdue,
            "completion_rate": round(completed / total * 100) if total else 0,
        }

    # ============== HELPERS ==============

    @staticmethod
    def _apply_filters(query, status, category, priority, assigned_to, urgent, completed):
        if status:
            query = query.where(Task.status == status)
        if category:
            query = query.where(Task.category == category)
        if priority:
            query = query.where(Task.priority == priority)
        if assigned_to:
            query = query.where(Task.assigned_to == assigned_to)
        if urgent is not None:
            query = query.where(Task.urgent.is_(urgent))
        if completed is True:
            query = query.where(Task.status == TaskStatus.COMPLETED)
        elif completed is False:
            query = query.where(Task.status != TaskStatus.COMPLETED)
        return query

    async def _page(self, query, limit: int, offset: int) -> List[Task]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = query.order_by(Task.created_at.desc()).offset(max(offset, 0)).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _apply_updates(task: Task, updates: Dict[str, Any]) -> None:
        for name in UPDATABLE_FIELDS:
            if name in updates:
                setattr(task, name, updates[name])

        # completed_at follows status whenever status is part of the update
        if "status" in updates:
            if updates["status"] == TaskStatus.COMPLETED:
                task.completed_at = task.completed_at or datetime.utcnow()
            else:
                task.completed_at = None

    async def _require_active_member(self, group_id: UUID, member_id: UUID) -> None:
        result = await self.db.execute(
            select(GroupMembership.id).where(
                GroupMembership.group_id == group_id,
                GroupMembership.member_id == member_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
        )
        if result.scalar_one_or_none() is None:
            raise ValueError("Assignee is not an active member of this group")
