"""
HOMEBASE - Task Routes
=======================
Household task management. Every route requires data processing consent.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.api.deps import (
    get_auth_context, require_data_processing_consent, require_group_permission,
)
from homebase.db.database import get_db
from homebase.db.models import TaskCategory, TaskPriority, TaskStatus
from homebase.schemas.tasks import (
    TaskAssign, TaskBulkUpdate, TaskCreate, TaskResponse, TaskStats, TaskUpdate,
)
from homebase.security.gate import AuthContext
from homebase.services.audit import AuditService
from homebase.services.tasks import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, TaskService

router = APIRouter(tags=["Tasks"], dependencies=[Depends(require_data_processing_consent)])


# ============== GROUP TASKS ==============

@router.post("/groups/{group_id}/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: Request,
    group_id: UUID,
    data: TaskCreate,
    ctx: AuthContext = Depends(require_group_permission("tasks:create")),
    db: AsyncSession = Depends(get_db),
):
    try:
        task = await TaskService(db).create_task(group_id, ctx.member.id, data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_data_change(
        action="task_created",
        actor_id=ctx.member.id,
        resource_type="task",
        resource_id=str(task.id),
        group_id=group_id,
        details={"title": task.title, "category": task.category.value},
        request=request,
    )
    return task


@router.get("/groups/{group_id}/tasks", response_model=List[TaskResponse])
async def list_tasks(
    group_id: UUID,
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    category: Optional[TaskCategory] = None,
    priority: Optional[TaskPriority] = None,
    assigned_to: Optional[UUID] = None,
    urgent: Optional[bool] = None,
    completed: Optional[bool] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_group_permission("tasks:read")),
    db: AsyncSession = Depends(get_db),
):
    return await TaskService(db).list_group_tasks(
        group_id,
        status=status_filter,
        category=category,
        priority=priority,
        assigned_to=assigned_to,
        urgent=urgent,
        completed=completed,
        limit=limit,
        offset=offset,
    )


@router.get("/groups/{group_id}/tasks/stats", response_model=TaskStats)
async def task_stats(
    group_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("tasks:read")),
    db: AsyncSession = Depends(get_db),
):
    return await TaskService(db).get_stats(group_id)


@router.post("/groups/{group_id}/tasks/bulk-update", response_model=List[TaskResponse])
async def bulk_update_tasks(
    request: Request,
    group_id: UUID,
    data: TaskBulkUpdate,
    ctx: AuthContext = Depends(require_group_permission("tasks:update")),
    db: AsyncSession = Depends(get_db),
):
    changes = data.updates.changes()
    try:
        tasks = await TaskService(db).bulk_update(group_id, data.task_ids, changes)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_data_change(
        action="tasks_bulk_updated",
        actor_id=ctx.member.id,
        resource_type="task",
        resource_id=",".join(str(t.id) for t in tasks)[:100],
        group_id=group_id,
        details={"task_ids": [str(t.id) for t in tasks], "changes": jsonable_encoder(changes)},
        request=request,
    )
    return tasks


@router.get("/groups/{group_id}/members/{member_id}/tasks", response_model=List[TaskResponse])
async def list_member_tasks(
    group_id: UUID,
    member_id: UUID,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_group_permission("tasks:read")),
    db: AsyncSession = Depends(get_db),
):
    return await TaskService(db).list_assigned_tasks(member_id, group_id=group_id, limit=limit, offset=offset)


@router.get("/tasks/mine", response_model=List[TaskResponse])
async def list_my_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    completed: Optional[bool] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Tasks assigned to the caller across the groups they belong to."""
    return await TaskService(db).list_assigned_tasks(
        ctx.member.id,
        status=status_filter,
        completed=completed,
        limit=limit,
        offset=offset,
        group_ids=[m.group_id for m in ctx.memberships],
    )


# ============== SINGLE TASK ==============

@router.get("/groups/{group_id}/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    group_id: UUID,
    task_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("tasks:read")),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService(db).get_task(task_id, group_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


@router.patch("/groups/{group_id}/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    request: Request,
    group_id: UUID,
    task_id: UUID,
    data: TaskUpdate,
    ctx: AuthContext = Depends(require_group_permission("tasks:update")),
    db: AsyncSession = Depends(get_db),
):
    changes = data.changes()
    try:
        task = await TaskService(db).update_task(task_id, group_id, changes)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_data_change(
        action="task_updated",
        actor_id=ctx.member.id,
        resource_type="task",
        resource_id=str(task.id),
        group_id=group_id,
        details={"changes": jsonable_encoder(changes)},
        request=request,
    )
    return task


@router.post("/groups/{group_id}/tasks/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    request: Request,
    group_id: UUID,
    task_id: UUID,
    data: TaskAssign,
    ctx: AuthContext = Depends(require_group_permission("tasks:assign")),
    db: AsyncSession = Depends(get_db),
):
    try:
        task = await TaskService(db).assign_task(task_id, group_id, data.assigned_to)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_data_change(
        action="task_assigned",
        actor_id=ctx.member.id,
        resource_type="task",
        resource_id=str(task.id),
        group_id=group_id,
        details={"assigned_to": str(data.assigned_to)},
        request=request,
    )
    return task


@router.post("/groups/{group_id}/tasks/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    request: Request,
    group_id: UUID,
    task_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("tasks:complete")),
    db: AsyncSession = Depends(get_db),
):
    try:
        task = await TaskService(db).complete_task(task_id, group_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    await AuditService(db).log_data_change(
        action="task_completed",
        actor_id=ctx.member.id,
        resource_type="task",
        resource_id=str(task.id),
        group_id=group_id,
        request=request,
    )
    return task


@router.delete("/groups/{group_id}/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    request: Request,
    group_id: UUID,
    task_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("tasks:delete")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await TaskService(db).delete_task(task_id, group_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    await AuditService(db).log_data_change(
        action="task_deleted",
        actor_id=ctx.member.id,
        resource_type="task",
        resource_id=str(task_id),
        group_id=group_id,
        request=request,
    )
