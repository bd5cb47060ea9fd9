"""
Обработчики задач диспетчера.
"""

import logging
from datetime import datetime
from html import escape

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from fieldservice.core.decorators import FSM_STAFF, MANAGERS, require_role
from fieldservice.core.exceptions import FieldServiceError
from fieldservice.handlers.common import get_session, reply_error
from fieldservice.models.task import TASK_STATUS_LABELS, Task, TaskStatus
from fieldservice.services.task_service import TaskService

logger = logging.getLogger(__name__)


def _tasks(context: ContextTypes.DEFAULT_TYPE) -> TaskService:
    return context.application.bot_data["tasks"]


def format_task(task: Task) -> str:
    line = f"• <b>{escape(task.title)}</b> [{TASK_STATUS_LABELS[task.status]}]"
    if task.scheduled_date:
        line += f", на {task.scheduled_date:%d.%m.%Y}"
    return f"{line} <code>{task.id[:8]}</code>"


@require_role(*FSM_STAFF)
async def list_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Руководитель видит все открытые задачи, остальные только свои."""
    message = update.effective_message
    session = get_session(context)
    assigned_to = None if session.is_manager else session.employee_id
    if not session.is_manager and assigned_to is None:
        await message.reply_text("⚠️ У вас нет карточки сотрудника.")
        return

    tasks = [
        t
        for t in await _tasks(context).list_tasks(assigned_to=assigned_to)
        if t.status not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)
    ]
    if not tasks:
        await message.reply_text("📭 Открытых задач нет.")
        return
    await message.reply_text(
        "\n".join(format_task(t) for t in tasks), parse_mode=ParseMode.HTML
    )


@require_role(*MANAGERS)
async def new_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /newtask <название>[; <id сотрудника>[; <ГГГГ-ММ-ДД>]]
    """
    message = update.effective_message
    parts = [p.strip() for p in " ".join(context.args or []).split(";")]
    if not parts[0]:
        await message.reply_text(
            "⚠️ Использование: /newtask <название>[; <id сотрудника>[; <ГГГГ-ММ-ДД>]]"
        )
        return

    try:
        scheduled = (
            datetime.strptime(parts[2], "%Y-%m-%d").date()
            if len(parts) > 2 and parts[2]
            else None
        )
    except ValueError:
        await message.reply_text("⚠️ Дата указывается в формате ГГГГ-ММ-ДД.")
        return

    try:
        assigned_to = None
        if len(parts) > 1 and parts[1]:
            assigned_to = (await context.bot_data["employees"].require(parts[1])).id
        task = await _tasks(context).create_task(
            get_session(context),
            parts[0],
            assigned_to=assigned_to,
            scheduled_date=scheduled,
        )
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(
        f"✅ Задача создана\n{format_task(task)}", parse_mode=ParseMode.HTML
    )


async def _change_task(update, context, usage: str, action) -> None:
    message = update.effective_message
    if not context.args:
        await message.reply_text(f"⚠️ Использование: {usage}")
        return
    try:
        task = await action(context.args[0], get_session(context))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(format_task(task), parse_mode=ParseMode.HTML)


@require_role(*FSM_STAFF)
async def start_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _change_task(update, context, "/starttask <id>", _tasks(context).start)


@require_role(*FSM_STAFF)
async def complete_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _change_task(update, context, "/donetask <id>", _tasks(context).complete)


@require_role(*MANAGERS)
async def cancel_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _change_task(update, context, "/canceltask <id>", _tasks(context).cancel)


@require_role(*MANAGERS)
async def assign_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/assigntask <id задачи> <id сотрудника>"""
    message = update.effective_message
    args = context.args or []
    if len(args) < 2:
        await message.reply_text("⚠️ Использование: /assigntask <id задачи> <id сотрудника>")
        return
    try:
        employee = await context.bot_data["employees"].require(args[1])
        task = await _tasks(context).assign(args[0], get_session(context), employee.id)
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    logger.info(f"Task {task.id} assigned to {employee.id}.")
    await message.reply_text(
        f"👷 Назначено: {escape(employee.full_name)}\n{format_task(task)}",
        parse_mode=ParseMode.HTML,
    )
