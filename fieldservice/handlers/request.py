"""
Обработчики для создания заявок и управления их жизненным циклом.
"""

import io
import logging
from html import escape

from telegram import (
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
    Update,
)
from telegram.constants import ParseMode
from telegram.ext import ContextTypes, ConversationHandler

from fieldservice.core.decorators import FSM_STAFF, MANAGERS, require_role
from fieldservice.core.exceptions import (
    AlreadyAcceptedError,
    FieldServiceError,
    InvalidInputError,
)
from fieldservice.core.timeutils import format_datetime
from fieldservice.handlers.common import get_session, reply_error
from fieldservice.models.request import PRIORITY_LABELS, RequestStatus
from fieldservice.services.lifecycle import LifecycleEngine
from fieldservice.services.notification_service import (
    NotificationService,
    format_request_card,
    request_keyboard,
)
from fieldservice.services.request_store import RequestStore

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "✅ Заявка создана и отправлена в техническую службу."
LIST_LIMIT = 20

# Состояния диалога создания заявки
(NAME, PHONE, ADDRESS, PROBLEM, PRIORITY) = range(5)
# Состояние диалога загрузки фото
PHOTO = 10

PRIORITY_BY_LABEL = {label: priority for priority, label in PRIORITY_LABELS.items()}


def _store(context: ContextTypes.DEFAULT_TYPE) -> RequestStore:
    return context.application.bot_data["store"]


def _lifecycle(context: ContextTypes.DEFAULT_TYPE) -> LifecycleEngine:
    return context.application.bot_data["lifecycle"]


def _require_args(context: ContextTypes.DEFAULT_TYPE, count: int, usage: str) -> list[str]:
    args = context.args or []
    if len(args) < count:
        raise InvalidInputError(f"Неверный формат. Использование: {usage}")
    return args


# --- Создание заявки ---


@require_role(*FSM_STAFF)
async def new_request_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Начинает диалог создания новой заявки."""
    context.user_data["new_request"] = {}
    await update.effective_message.reply_text(
        "Начинаем создание новой заявки.\n\n<b>Шаг 1/5:</b> Введите имя клиента.",
        parse_mode=ParseMode.HTML,
    )
    return NAME


async def get_name(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data["new_request"]["name"] = update.effective_message.text
    await update.effective_message.reply_text(
        "<b>Шаг 2/5:</b> Введите телефон клиента.", parse_mode=ParseMode.HTML
    )
    return PHONE


async def get_phone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data["new_request"]["phone"] = update.effective_message.text
    await update.effective_message.reply_text(
        "<b>Шаг 3/5:</b> Введите адрес (улица, дом, подъезд).",
        parse_mode=ParseMode.HTML,
    )
    return ADDRESS


async def get_address(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data["new_request"]["address"] = update.effective_message.text
    await update.effective_message.reply_text(
        "<b>Шаг 4/5:</b> Опишите проблему.", parse_mode=ParseMode.HTML
    )
    return PROBLEM


async def get_problem(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data["new_request"]["message"] = update.effective_message.text
    keyboard = [[label] for label in PRIORITY_BY_LABEL]
    await update.effective_message.reply_text(
        "<b>Шаг 5/5:</b> Выберите приоритет с помощью кнопок ниже.",
        reply_markup=ReplyKeyboardMarkup(
            keyboard, one_time_keyboard=True, resize_keyboard=True
        ),
        parse_mode=ParseMode.HTML,
    )
    return PRIORITY


async def get_priority(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает приоритет, сохраняет заявку и завершает диалог."""
    message = update.effective_message
    priority = PRIORITY_BY_LABEL.get(message.text)
    if priority is None:
        await message.reply_text(
            "Пожалуйста, выберите приоритет, используя предложенные кнопки."
        )
        return PRIORITY

    data = context.user_data.pop("new_request", {})
    data["priority"] = priority
    session = get_session(context)

    try:
        request = await _store(context).create_request(data, session)
    except FieldServiceError as e:
        await message.reply_text(f"❌ {e}", reply_markup=ReplyKeyboardRemove())
        return ConversationHandler.END

    await NotificationService.send_new_request_notification(
        bot=context.bot,
        chat_id=context.bot_data["settings"].tech_chat_id,
        request=request,
    )
    await message.reply_text(
        f"{SUCCESS_MESSAGE}\nНомер: #{request.short_id}",
        reply_markup=ReplyKeyboardRemove(),
    )
    logger.info(f"Request {request.id} created via bot by user {session.user_id}.")
    return ConversationHandler.END


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Отменяет текущий диалог."""
    context.user_data.pop("new_request", None)
    context.user_data.pop("photo_request_id", None)
    await update.effective_message.reply_text(
        "Действие отменено.", reply_markup=ReplyKeyboardRemove()
    )
    return ConversationHandler.END


# --- Просмотр ---


@require_role(*FSM_STAFF)
async def list_requests(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /requests [статус]. Без аргумента показывает открытые заявки.
    """
    message = update.effective_message
    store = _store(context)
    try:
        if context.args:
            status = RequestStatus(context.args[0].lower())
            requests = await store.list_requests(status=status)
        else:
            requests = [
                r
                for r in await store.list_requests()
                if r.status in (RequestStatus.PENDING, RequestStatus.IN_PROGRESS)
            ]
    except ValueError:
        statuses = ", ".join(s.value for s in RequestStatus)
        await message.reply_text(f"⚠️ Неизвестный статус. Доступные: {statuses}")
        return
    except FieldServiceError as e:
        await reply_error(message, e)
        return

    if not requests:
        await message.reply_text("📭 Заявок нет.")
        return

    for request in requests[:LIST_LIMIT]:
        await message.reply_text(
            text=format_request_card(request),
            parse_mode=ParseMode.HTML,
            reply_markup=request_keyboard(request),
        )
    if len(requests) > LIST_LIMIT:
        await message.reply_text(f"…и еще {len(requests) - LIST_LIMIT} заявок.")


@require_role(*FSM_STAFF)
async def my_requests(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    session = get_session(context)
    if session.employee_id is None:
        await message.reply_text("⚠️ У вас нет карточки сотрудника.")
        return
    requests = await _store(context).list_requests(
        status=RequestStatus.IN_PROGRESS, accepted_by=session.employee_id
    )
    if not requests:
        await message.reply_text("📭 У вас нет заявок в работе.")
        return
    for request in requests:
        await message.reply_text(
            text=format_request_card(request), parse_mode=ParseMode.HTML
        )


@require_role(*FSM_STAFF)
async def show_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/request <id>: карточка заявки с позициями, чек-листом и журналом."""
    message = update.effective_message
    store = _store(context)
    tz = context.bot_data["settings"].display_timezone
    try:
        args = _require_args(context, 1, "/request <id>")
        request = await store.get(args[0])
        items = await store.list_line_items(request.id)
        checklist = await store.list_checklist(request.id)
        history = await store.list_history(request.id)
    except FieldServiceError as e:
        await reply_error(message, e)
        return

    parts = [format_request_card(request), f"<code>{request.id}</code>"]
    if items:
        total = sum(item.total for item in items)
        parts.append("\n<b>Позиции:</b>")
        parts.extend(
            f"• {escape(i.product_name)} × {i.quantity} {escape(i.unit)} = {i.total} "
            f"(<code>{i.id[:8]}</code>)"
            for i in items
        )
        parts.append(f"Итого: <b>{total}</b>")
    if checklist:
        parts.append("\n<b>Чек-лист:</b>")
        parts.extend(
            f"{'☑️' if c.is_completed else '⬜️'} {escape(c.item_text)} (<code>{c.id[:8]}</code>)"
            for c in checklist
        )
    if request.notes:
        parts.append(f"\n<b>Заметки:</b>\n{escape(request.notes)}")
    if history:
        parts.append("\n<b>Журнал:</b>")
        parts.extend(
            f"{format_datetime(h.created_at, tz)} — {escape(h.actor_name or '')}: "
            f"{escape(h.description)}"
            for h in history[-10:]
        )

    await message.reply_text(
        "\n".join(parts),
        parse_mode=ParseMode.HTML,
        reply_markup=request_keyboard(request),
    )


# --- Переходы статуса ---


@require_role(*FSM_STAFF)
async def request_callback_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Обрабатывает нажатия на inline-кнопки под сообщениями с заявками.
    """
    query = update.callback_query
    action, request_id = query.data.split(":", 1)
    session = get_session(context)

    if action != "accept_req":
        await query.answer()
        return

    try:
        request = await _lifecycle(context).accept(request_id, session)
    except AlreadyAcceptedError:
        await query.answer(
            "⚠️ Эту заявку уже взял в работу другой сотрудник.", show_alert=True
        )
        return
    except FieldServiceError as e:
        await query.answer(f"⚠️ {e}", show_alert=True)
        return

    await query.answer("Заявка принята в работу")
    request = await _store(context).get(request.id)
    await query.edit_message_text(
        text=format_request_card(request), parse_mode=ParseMode.HTML, reply_markup=None
    )
    logger.info(f"Request {request.id} accepted via button by user {session.user_id}.")


async def _notify_status(context, request, event: str) -> None:
    await NotificationService.send_status_notification(
        bot=context.bot,
        chat_id=context.bot_data["settings"].tech_chat_id,
        request=request,
        event=event,
    )


@require_role(*FSM_STAFF)
async def decline_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/decline <id> <причина>: вернуть заявку в общий пул."""
    message = update.effective_message
    session = get_session(context)
    try:
        args = _require_args(context, 2, "/decline <id> <причина>")
        request = await _lifecycle(context).decline(args[0], session, " ".join(args[1:]))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"↩️ Заявка #{request.short_id} возвращена в общий пул.")
    await _notify_status(
        context, request, f"↩️ {escape(session.actor_name)} отказался от заявки"
    )


@require_role(*FSM_STAFF)
async def cancel_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/cancelreq <id> <причина>"""
    message = update.effective_message
    session = get_session(context)
    try:
        args = _require_args(context, 2, "/cancelreq <id> <причина>")
        request = await _lifecycle(context).cancel(args[0], session, " ".join(args[1:]))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"🚫 Заявка #{request.short_id} отменена.")


@require_role(*FSM_STAFF)
async def complete_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/complete <id> [отчет о выполненной работе]"""
    message = update.effective_message
    session = get_session(context)
    try:
        args = _require_args(context, 1, "/complete <id> [отчет]")
        request = await _lifecycle(context).complete(
            args[0], session, " ".join(args[1:]) or None
        )
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"✅ Заявка #{request.short_id} выполнена.")
    await _notify_status(
        context, request, f"✅ {escape(session.actor_name)} выполнил заявку"
    )


@require_role(*FSM_STAFF)
async def add_note(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        args = _require_args(context, 2, "/note <id> <текст>")
        await _lifecycle(context).add_note(args[0], get_session(context), " ".join(args[1:]))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text("📝 Заметка добавлена.")


@require_role(*MANAGERS)
async def delete_request(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        args = _require_args(context, 1, "/delreq <id>")
        deleted = await _lifecycle(context).delete_request(args[0], get_session(context))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text("🗑️ Заявка удалена." if deleted else "⚠️ Заявка не найдена.")


# --- Позиции и чек-лист ---


@require_role(*FSM_STAFF)
async def add_item(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/additem <id заявки> <id товара> [количество]"""
    message = update.effective_message
    try:
        args = _require_args(context, 2, "/additem <id заявки> <id товара> [кол-во]")
        try:
            quantity = int(args[2]) if len(args) > 2 else 1
        except ValueError:
            raise InvalidInputError("Количество должно быть целым числом.")
        item = await _lifecycle(context).add_line_item(
            args[0], get_session(context), args[1], quantity
        )
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(
        f"📦 Добавлено: {item.product_name} × {item.quantity} = {item.total}"
    )


@require_role(*FSM_STAFF)
async def remove_item(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        args = _require_args(context, 1, "/delitem <id позиции>")
        item = await _lifecycle(context).remove_line_item(args[0], get_session(context))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"🗑️ Позиция «{item.product_name}» удалена.")


@require_role(*FSM_STAFF)
async def add_checklist_item(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        args = _require_args(context, 2, "/check <id заявки> <текст>")
        item = await _lifecycle(context).add_checklist_item(
            args[0], get_session(context), " ".join(args[1:])
        )
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"⬜️ {item.item_text} (<code>{item.id[:8]}</code>)", parse_mode=ParseMode.HTML)


@require_role(*FSM_STAFF)
async def toggle_checklist_item(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        args = _require_args(context, 1, "/toggle <id пункта>")
        item = await _lifecycle(context).toggle_checklist_item(args[0], get_session(context))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"{'☑️' if item.is_completed else '⬜️'} {item.item_text}")


@require_role(*FSM_STAFF)
async def delete_checklist_item(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        args = _require_args(context, 1, "/delcheck <id пункта>")
        await _lifecycle(context).delete_checklist_item(args[0], get_session(context))
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text("🗑️ Пункт удален.")


# --- Фото ---


@require_role(*FSM_STAFF)
async def photo_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """/photo <id>: ждем фотографию для заявки."""
    message = update.effective_message
    try:
        args = _require_args(context, 1, "/photo <id заявки>")
        request = await _store(context).get(args[0])
        if not _lifecycle(context).can_edit(request, get_session(context)):
            raise InvalidInputError("Фото можно добавить только к вашей заявке в работе.")
    except FieldServiceError as e:
        await reply_error(message, e)
        return ConversationHandler.END

    context.user_data["photo_request_id"] = request.id
    await message.reply_text(
        f"Прикрепите фотографию к заявке #{request.short_id}. Для отмены нажмите /cancel."
    )
    return PHOTO


async def get_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Скачивает фото из Telegram и загружает его в хранилище."""
    message = update.effective_message
    request_id = context.user_data.pop("photo_request_id", None)
    if request_id is None:
        return ConversationHandler.END

    await message.reply_text("Фото получено. Загружаю, это может занять несколько секунд...")
    photo_file = message.photo[-1]
    tg_file = await context.bot.get_file(photo_file.file_id)
    content = io.BytesIO()
    await tg_file.download_to_memory(content)

    try:
        await _lifecycle(context).add_photo(
            request_id,
            get_session(context),
            content.getvalue(),
            f"{photo_file.file_unique_id}.jpg",
            caption=message.caption,
        )
    except FieldServiceError as e:
        await reply_error(message, e)
        return ConversationHandler.END

    await message.reply_text("📷 Фото добавлено к заявке.")
    return ConversationHandler.END

