"""
Обработчики общих команд, доступных всем сотрудникам.
"""

import json
import logging

from telegram import Message, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from fieldservice.core.decorators import FSM_STAFF, require_role
from fieldservice.core.exceptions import FieldServiceError
from fieldservice.core.session import Session

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "<b>Заявки</b>\n"
    "/new — новая заявка\n"
    "/requests [статус] — список заявок\n"
    "/my — мои заявки в работе\n"
    "/request &lt;id&gt; — карточка заявки\n"
    "/decline &lt;id&gt; &lt;причина&gt; — отказаться от заявки\n"
    "/cancelreq &lt;id&gt; &lt;причина&gt; — отменить заявку\n"
    "/complete &lt;id&gt; [отчет] — завершить заявку\n"
    "/note &lt;id&gt; &lt;текст&gt; — добавить заметку\n"
    "/additem &lt;id&gt; &lt;id товара&gt; [кол-во] • /delitem &lt;id позиции&gt;\n"
    "/check &lt;id&gt; &lt;текст&gt; • /toggle &lt;id пункта&gt; • /delcheck &lt;id пункта&gt;\n"
    "/photo &lt;id&gt; — прикрепить фото\n\n"
    "<b>Задачи</b>\n"
    "/tasks • /starttask &lt;id&gt; • /donetask &lt;id&gt;\n\n"
    "<b>Руководителям</b>\n"
    "/report [с] [по] • /employees • /products • /clients • /db\n"
    "/newtask • /assigntask • /canceltask • /delreq &lt;id&gt; • /escalate"
)


def get_session(context: ContextTypes.DEFAULT_TYPE) -> Session:
    return context.user_data["session"]


async def reply_error(message: Message, error: FieldServiceError) -> None:
    logger.info(f"Rejected action: {type(error).__name__}: {error}")
    await message.reply_text(f"⚠️ {error}")


@require_role(*FSM_STAFF)
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Обработчик команды /start.

    Приветствует авторизованного сотрудника и показывает его роли.
    """
    session = get_session(context)
    roles = ", ".join(sorted(role.value for role in session.roles))

    logger.info(
        f"Authorized user {session.user_id} ({session.actor_name}) with roles '{roles}' started the bot."
    )

    await update.message.reply_html(
        rf"Привет, {session.actor_name}! 👋"
        f"\n\nВаш статус: <b>авторизован</b>."
        f"\nВаши роли: <b>{roles}</b>."
        f"\n\n{HELP_TEXT}"
    )


async def show_my_id(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Отправляет пользователю его собственный Telegram ID."""
    user = update.effective_user
    if not user:
        return

    logger.info(f"User {user.id} requested their ID.")
    await update.message.reply_text(
        f"Ваш Telegram ID: <code>{user.id}</code>\n\n"
        f"Пожалуйста, отправьте этот ID вашему администратору для получения доступа.",
        parse_mode="HTML",
    )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Логирует ошибки и отправляет уведомление администраторам.
    """

    logger.error("Exception while handling an update:", exc_info=context.error)

    if isinstance(update, Update):
        update_str = json.dumps(update.to_dict(), indent=2, ensure_ascii=False)
    else:
        update_str = str(update)

    message = (
        f"‼️ <b>Произошла ошибка в боте</b> ‼️\n\n"
        f"<pre>update = {update_str}</pre>\n\n"
        f"<pre>{context.error}</pre>"
    )

    for admin_id in context.bot_data["settings"].admin_ids:
        try:
            # Разделяем сообщение, если оно слишком длинное
            for x in range(0, len(message), 4096):
                await context.bot.send_message(
                    chat_id=admin_id,
                    text=message[x : x + 4096],
                    parse_mode=ParseMode.HTML,
                )
        except Exception as e:
            logger.error(f"Failed to send error message to admin {admin_id}: {e}")


async def unauthorized_user_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Обрабатывает сообщения от пользователей, которых нет в справочнике сотрудников.
    """
    user = update.effective_user
    if not user:
        return

    session = await context.bot_data["employees"].session_for(
        user.id, user.first_name or str(user.id)
    )
    if session is not None:
        await update.message.reply_text("Неизвестная команда. Список команд: /start")
        return

    logger.warning(
        f"Received message from unauthorized user {user.id} ({user.first_name})."
    )

    admin_message = (
        f"⚠️ Получено сообщение от неавторизованного пользователя:\n\n"
        f"Имя: {user.first_name}\n"
        f"Username: @{user.username}\n"
        f"ID: <code>{user.id}</code>\n\n"
        f"Чтобы добавить его, используйте команду:\n"
        f"<code>/addemployee {user.id} &lt;роль&gt; &lt;ФИО&gt;</code>"
    )
    for admin_id in context.bot_data["settings"].admin_ids:
        try:
            await context.bot.send_message(
                chat_id=admin_id, text=admin_message, parse_mode=ParseMode.HTML
            )
        except Exception as e:
            logger.error(f"Failed to send unauthorized notice to admin {admin_id}: {e}")

    await update.message.reply_text(
        "Здравствуйте! К сожалению, у вас нет доступа к этому боту. "
        "Пожалуйста, обратитесь к администратору."
    )
