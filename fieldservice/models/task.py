"""
Модель задачи диспетчера.

Задача похожа на заявку, но назначается конкретному сотруднику заранее,
а не забирается им из общего пула.
"""

import uuid
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

from fieldservice.core.timeutils import utcnow
from fieldservice.models.request import Priority


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TASK_STATUS_LABELS: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "Ожидает",
    TaskStatus.ASSIGNED: "Назначена",
    TaskStatus.IN_PROGRESS: "В работе",
    TaskStatus.COMPLETED: "Выполнена",
    TaskStatus.CANCELLED: "Отменена",
}


class Task(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = Field(..., min_length=1)
    description: str | None = None
    client_id: str | None = None
    assigned_to: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    scheduled_date: date | None = None
    completed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
