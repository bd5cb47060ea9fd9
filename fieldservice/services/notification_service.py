"""
Сервис для отправки уведомлений о заявках в чат техслужбы и форматирования карточек.
"""

import logging
from html import escape

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode

from fieldservice.core.config import settings
from fieldservice.core.timeutils import format_datetime
from fieldservice.models.request import (
    PRIORITY_LABELS,
    RequestStatus,
    ServiceRequest,
    STATUS_LABELS,
)

logger = logging.getLogger(__name__)


def format_request_card(request: ServiceRequest) -> str:
    """HTML-карточка заявки для сообщений бота."""
    tz = settings.display_timezone
    lines = [
        f"<b>Заявка #{request.short_id}</b>",
        f"👤 {escape(request.name)}, 📞 {escape(request.phone)}",
        f"📍 {escape(request.address)}",
    ]
    if request.message:
        lines.append(f"🔧 {escape(request.message)}")
    lines.append(f"🕓 Создана: {format_datetime(request.created_at, tz)}")
    lines.append(
        f"Статус: {STATUS_LABELS[request.status]} • "
        f"Приоритет: {PRIORITY_LABELS[request.priority]}"
    )
    if request.accepted_employee:
        lines.append(f"🛠 Исполнитель: {escape(request.accepted_employee.full_name)}")
    if request.accepted_at:
        lines.append(f"Принята: {format_datetime(request.accepted_at, tz)}")
    if request.completed_at:
        lines.append(f"Выполнена: {format_datetime(request.completed_at, tz)}")
    return "\n".join(lines)


def request_keyboard(request: ServiceRequest) -> InlineKeyboardMarkup | None:
    if request.status == RequestStatus.PENDING:
        return InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton(
                        "✅ Принять в работу", callback_data=f"accept_req:{request.id}"
                    )
                ]
            ]
        )
    return None


class NotificationService:
    @staticmethod
    async def send_new_request_notification(
        bot: Bot, chat_id: int, request: ServiceRequest
    ):
        """
        Отправляет уведомление о новой заявке в чат техслужбы.
        """
        text = "🚨 <b>Новая заявка</b> 🚨\n\n" + format_request_card(request)
        try:
            await bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=request_keyboard(request),
            )
            logger.info(
                f"Sent new request notification for {request.id} to chat {chat_id}."
            )
        except Exception as e:
            logger.error(
                f"Failed to send notification for {request.id} to chat {chat_id}: {e}",
                exc_info=True,
            )

    @staticmethod
    async def send_status_notification(
        bot: Bot, chat_id: int, request: ServiceRequest, event: str
    ):
        """
        Сообщает в чат техслужбы об изменении статуса заявки.
        """
        text = (
            f"{event}\n\n"
            f"<b>Заявка #{request.short_id}</b> — {escape(request.address)}\n"
            f"Статус: {STATUS_LABELS[request.status]}"
        )
        try:
            await bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=request_keyboard(request),
            )
            logger.info(f"Sent status notification for {request.id} to chat {chat_id}.")
        except Exception as e:
            logger.error(
                f"Failed to send status notification for {request.id}: {e}",
                exc_info=True,
            )
