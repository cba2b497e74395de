"""
HOMEBASE - Task Schemas
========================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from homebase.db.models import TaskCategory, TaskPriority, TaskStatus, utc_naive

NULLABLE_FIELDS = {"description", "assigned_to", "due_date", "estimated_minutes"}


def _strip_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Task title is required")
    return value


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field("", max_length=500)
    category: TaskCategory
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[UUID] = None
    due_date: Optional[datetime] = None
    urgent: bool = False
    estimated_minutes: Optional[int] = Field(None, ge=1, le=1440)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return _strip_title(v)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return utc_naive(v)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[TaskCategory] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    assigned_to: Optional[UUID] = None
    due_date: Optional[datetime] = None
    urgent: Optional[bool] = None
    estimated_minutes: Optional[int] = Field(None, ge=1, le=1440)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        return _strip_title(v)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return utc_naive(v)

    def changes(self) -> dict:
        """Fields the client actually sent; nulls are dropped for required columns."""
        data = self.model_dump(exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k in NULLABLE_FIELDS}


class TaskAssign(BaseModel):
    assigned_to: UUID


class TaskBulkUpdate(BaseModel):
    task_ids: List[UUID] = Field(..., min_length=1)
    updates: TaskUpdate


class TaskResponse(BaseModel):
    id: UUID
    group_id: UUID
    title: str
    description: Optional[str] = None
    category: TaskCategory
    priority: TaskPriority
    status: TaskStatus
    assigned_to: Optional[UUID] = None
    created_by: Optional[UUID] = None
    due_date: Optional[datetime] = None
    urgent: bool
    estimated_minutes: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskStats(BaseModel):
    total: int
    completed: int
    pending: int
    in_progress: int
    overdue: int
    completion_rate: int
