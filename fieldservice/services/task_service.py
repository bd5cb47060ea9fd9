"""
Задачи диспетчера: создаются руководителем и назначаются сотруднику заранее.
"""

import logging
from datetime import date, datetime
from typing import Callable

from pydantic import ValidationError

from fieldservice.core.exceptions import (
    InvalidInputError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from fieldservice.core.fsm import TransitionValidator
from fieldservice.core.session import Session
from fieldservice.core.timeutils import utcnow
from fieldservice.models.request import Priority
from fieldservice.models.schema import TASKS, from_row, to_row
from fieldservice.models.task import Task, TaskStatus
from fieldservice.services.backend import DataBackend, OrderBy
from fieldservice.services.request_store import describe_validation_error, find_by_ref

logger = logging.getLogger(__name__)

TASK_FSM = TransitionValidator(
    {
        TaskStatus.PENDING: {TaskStatus.ASSIGNED, TaskStatus.CANCELLED},
        TaskStatus.ASSIGNED: {
            TaskStatus.ASSIGNED,
            TaskStatus.IN_PROGRESS,
            TaskStatus.CANCELLED,
        },
        TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED},
        TaskStatus.COMPLETED: set(),
        TaskStatus.CANCELLED: set(),
    }
)


class TaskService:
    def __init__(self, backend: DataBackend, clock: Callable[[], datetime] = utcnow):
        self.backend = backend
        self._clock = clock

    async def list_tasks(
        self, status: TaskStatus | None = None, assigned_to: str | None = None
    ) -> list[Task]:
        filters = {}
        if status is not None:
            filters["status"] = status
        if assigned_to is not None:
            filters["assigned_to"] = assigned_to
        rows = await self.backend.select(
            TASKS, filters or None, order=OrderBy("created_at", ascending=False)
        )
        return [from_row(Task, row) for row in rows]

    async def get(self, task_id: str) -> Task:
        return from_row(Task, await find_by_ref(self.backend, TASKS, task_id, "Задача"))

    async def create_task(
        self,
        session: Session,
        title: str,
        description: str | None = None,
        client_id: str | None = None,
        assigned_to: str | None = None,
        priority: Priority = Priority.MEDIUM,
        scheduled_date: date | None = None,
    ) -> Task:
        if not session.is_manager:
            raise PermissionDeniedError("Создавать задачи может только руководитель.")
        try:
            task = Task(
                title=title.strip(),
                description=description,
                client_id=client_id,
                assigned_to=assigned_to,
                status=TaskStatus.ASSIGNED if assigned_to else TaskStatus.PENDING,
                priority=priority,
                scheduled_date=scheduled_date,
                created_by=session.actor_id,
                created_at=self._clock(),
            )
        except ValidationError as e:
            raise InvalidInputError(describe_validation_error(e)) from e
        await self.backend.insert(TASKS, to_row(task))
        logger.info(f"Task {task.id} '{task.title}' created by {session.user_id}.")
        return task

    async def _move(self, task: Task, target: TaskStatus, patch: dict) -> Task:
        TASK_FSM.assert_can_transition(task.status, target)
        rows = await self.backend.update(
            TASKS, {**patch, "status": target}, {"id": task.id, "status": task.status}
        )
        if not rows:
            current = await self.get(task.id)
            raise InvalidTransitionError(
                current.status.value,
                target.value,
                "Статус задачи уже изменился. Обновите данные и повторите действие.",
            )
        logger.info(f"Task {task.id}: {task.status.value} -> {target.value}.")
        return from_row(Task, rows[0])

    def _require_assignee_or_manager(self, task: Task, session: Session) -> None:
        if session.is_manager:
            return
        if session.employee_id is None or session.employee_id != task.assigned_to:
            logger.warning(
                f"User {session.user_id} tried to change task {task.id} "
                f"assigned to {task.assigned_to}."
            )
            raise PermissionDeniedError(
                "Эту задачу может менять только назначенный сотрудник или руководитель."
            )

    async def assign(self, task_id: str, session: Session, employee_id: str) -> Task:
        if not session.is_manager:
            raise PermissionDeniedError("Назначать задачи может только руководитель.")
        task = await self.get(task_id)
        return await self._move(task, TaskStatus.ASSIGNED, {"assigned_to": employee_id})

    async def start(self, task_id: str, session: Session) -> Task:
        task = await self.get(task_id)
        self._require_assignee_or_manager(task, session)
        return await self._move(task, TaskStatus.IN_PROGRESS, {})

    async def complete(self, task_id: str, session: Session) -> Task:
        task = await self.get(task_id)
        self._require_assignee_or_manager(task, session)
        return await self._move(task, TaskStatus.COMPLETED, {"completed_at": self._clock()})

    async def cancel(self, task_id: str, session: Session) -> Task:
        if not session.is_manager:
            raise PermissionDeniedError("Отменять задачи может только руководитель.")
        task = await self.get(task_id)
        return await self._move(task, TaskStatus.CANCELLED, {})
