"""
Обработчик команды /report: сводка по заявкам за период и выгрузка в CSV.
"""

import io
import logging
from datetime import date, datetime

import pytz
from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from fieldservice.core.decorators import MANAGERS, require_role
from fieldservice.core.exceptions import FieldServiceError
from fieldservice.handlers.common import reply_error
from fieldservice.models.report import ReportSummary
from fieldservice.models.request import PRIORITY_LABELS, Priority
from fieldservice.services.reporting import ReportService, export_csv

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


def current_month(tz_name: str) -> tuple[date, date]:
    """С первого числа текущего месяца по сегодняшний день."""
    today = datetime.now(pytz.timezone(tz_name)).date()
    return today.replace(day=1), today


def parse_period(args: list[str], tz_name: str) -> tuple[date, date]:
    if not args:
        return current_month(tz_name)
    date_from = datetime.strptime(args[0], DATE_FORMAT).date()
    date_to = datetime.strptime(args[1], DATE_FORMAT).date() if len(args) > 1 else date_from
    return date_from, date_to


def format_summary(summary: ReportSummary) -> str:
    lines = [
        f"📊 <b>Отчет {summary.date_from:%d.%m.%Y} – {summary.date_to:%d.%m.%Y}</b>",
        "",
        f"Всего заявок: <b>{summary.total}</b> ({summary.total_trend.label})",
        f"Выполнено: <b>{summary.completed}</b> ({summary.completed_trend.label})",
        f"В работе: {summary.in_progress} • Ожидают: {summary.pending} • "
        f"Отменено: {summary.cancelled}",
        f"Процент выполнения: {summary.completion_rate}%",
        "",
        "<b>По приоритетам:</b>",
    ]
    lines.extend(
        f"• {PRIORITY_LABELS[p]}: {summary.priority_stats.get(p.value, 0)}" for p in Priority
    )
    lines += [
        "",
        f"💰 Услуги: {summary.revenue.service_sum} • Товары: {summary.revenue.product_sum}",
        f"Итого: <b>{summary.revenue.total}</b>",
    ]
    if summary.employee_stats:
        lines += ["", "<b>Сотрудники:</b>"]
        lines.extend(
            f"• {stat.name}: {stat.completed}/{stat.total} ({stat.completion_rate}%), "
            f"{stat.revenue}"
            for stat in summary.employee_stats
        )
    return "\n".join(lines)


@require_role(*MANAGERS)
async def report_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /report [ГГГГ-ММ-ДД] [ГГГГ-ММ-ДД]

    Без аргументов строит отчет за текущий месяц.
    """
    message = update.effective_message
    tz_name = context.bot_data["settings"].display_timezone
    try:
        date_from, date_to = parse_period(context.args or [], tz_name)
    except ValueError:
        await message.reply_text(
            "⚠️ Даты указываются в формате ГГГГ-ММ-ДД, например: /report 2024-05-01 2024-05-31"
        )
        return

    reports: ReportService = context.application.bot_data["reports"]
    try:
        summary = await reports.build(date_from, date_to)
    except FieldServiceError as e:
        await reply_error(message, e)
        return

    logger.info(
        f"User {update.effective_user.id} built report {summary.date_from}..{summary.date_to}."
    )
    await message.reply_text(format_summary(summary), parse_mode=ParseMode.HTML)
    await message.reply_document(
        document=io.BytesIO(export_csv(summary)),
        filename=f"report_{summary.date_from}_{summary.date_to}.csv",
    )
