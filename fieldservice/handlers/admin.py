"""
Обработчики административных команд: справочники и прямой доступ к таблицам.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from html import escape

from pydantic import ValidationError
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from fieldservice.core.decorators import MANAGERS, require_role
from fieldservice.core.exceptions import FieldServiceError
from fieldservice.handlers.common import get_session, reply_error
from fieldservice.models.client import Client
from fieldservice.models.employee import Employee, Role, role_for_position
from fieldservice.models.product import Product, ProductCategory
from fieldservice.services.catalog_service import ProductCatalog
from fieldservice.services.client_service import ClientDirectory
from fieldservice.services.db_proxy import DbProxy
from fieldservice.services.employee_service import EmployeeDirectory
from fieldservice.services.request_store import describe_validation_error

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


# --- Сотрудники ---


@require_role(*MANAGERS)
async def list_employees(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Выводит список сотрудников в виде карточек с кнопкой деактивации.
    """
    message = update.effective_message
    directory: EmployeeDirectory = context.application.bot_data["employees"]
    employees = await directory.get_all()

    if not employees:
        await message.reply_text("👥 Список сотрудников пуст.")
        return

    await message.reply_text(text="--- 👥 Список сотрудников ---")
    for employee in employees:
        reply_markup = None
        if employee.is_active:
            reply_markup = InlineKeyboardMarkup(
                [
                    [
                        InlineKeyboardButton(
                            "🚫 Деактивировать",
                            callback_data=f"deactivate_emp:{employee.id}",
                        )
                    ]
                ]
            )
        status = "активен" if employee.is_active else "неактивен"
        employee_info = (
            f"👤 <b>{escape(employee.full_name)}</b>\n"
            f"   Должность: <i>{escape(employee.position_label)}</i> ({employee.role.value})\n"
            f"   Telegram ID: <code>{employee.telegram_id or '—'}</code>\n"
            f"   Статус: {status}"
        )
        await message.reply_text(
            text=employee_info, parse_mode=ParseMode.HTML, reply_markup=reply_markup
        )


@require_role(Role.ADMIN)
async def add_employee(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Добавляет сотрудника.
    Использование: /addemployee <telegram_id> <роль или должность> <ФИО>
    Пример: /addemployee 123456789 master Иванов Иван
    """
    message = update.effective_message
    args = context.args or []

    if len(args) < 3:
        roles = ", ".join(r.value for r in Role)
        await message.reply_text(
            "⚠️ Неверный формат.\n\n"
            "Использование: /addemployee <ID пользователя> <роль> <ФИО>\n"
            "Пример: /addemployee 123456789 master Иванов Иван\n\n"
            f"Доступные роли: {roles}"
        )
        return

    try:
        telegram_id = int(args[0])
    except ValueError:
        await message.reply_text("⚠️ Ошибка: Telegram ID должен быть числом.")
        return
    # Роль можно указать кодом (master) или должностью (Мастер)
    role = role_for_position(args[1])
    if role is None:
        await message.reply_text(f"⚠️ Неизвестная роль: {args[1]}")
        return

    directory: EmployeeDirectory = context.application.bot_data["employees"]
    if await directory.get_by_telegram_id(telegram_id):
        await message.reply_text(
            f"Сотрудник с ID <code>{telegram_id}</code> уже существует.",
            parse_mode=ParseMode.HTML,
        )
        return

    employee = await directory.add(
        Employee(telegram_id=telegram_id, full_name=" ".join(args[2:]), role=role)
    )
    await message.reply_text(
        f"✅ Сотрудник {escape(employee.full_name)} добавлен с ролью <b>{role.value}</b>.",
        parse_mode=ParseMode.HTML,
    )
    logger.info(
        f"Admin {update.effective_user.id} added employee {employee.id} with role {role.value}."
    )


@require_role(Role.ADMIN)
async def deactivate_employee(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Деактивирует сотрудника по его Telegram ID.
    Использование: /delemployee <telegram_id>
    """
    message = update.effective_message
    try:
        telegram_id = int(context.args[0])
    except (IndexError, TypeError, ValueError):
        await message.reply_text("⚠️ Использование: /delemployee <Telegram ID>")
        return

    directory: EmployeeDirectory = context.application.bot_data["employees"]
    employee = await directory.get_by_telegram_id(telegram_id)
    if employee is None:
        await message.reply_text(
            f"⚠️ Сотрудник с ID <code>{telegram_id}</code> не найден.",
            parse_mode=ParseMode.HTML,
        )
        return

    await directory.set_active(employee.id, False)
    await message.reply_text(f"✅ Сотрудник {employee.full_name} деактивирован.")
    logger.info(f"Admin {update.effective_user.id} deactivated employee {employee.id}.")


@require_role(Role.ADMIN)
async def employee_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Обрабатывает нажатия на inline-кнопки в карточках сотрудников.
    """
    query = update.callback_query
    await query.answer()

    action, employee_id = query.data.split(":", 1)
    if action != "deactivate_emp":
        return

    directory: EmployeeDirectory = context.application.bot_data["employees"]
    try:
        employee = await directory.set_active(employee_id, False)
    except FieldServiceError as e:
        await query.edit_message_text(text=f"⚠️ {e}")
        return

    logger.info(f"Admin {query.from_user.id} deactivated employee {employee_id}.")
    await query.edit_message_text(
        text=f"✅ Сотрудник <b>{escape(employee.full_name)}</b> деактивирован.",
        parse_mode=ParseMode.HTML,
    )


# --- Каталог ---


@require_role(*MANAGERS)
async def list_products(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    catalog: ProductCatalog = context.application.bot_data["catalog"]
    products = await catalog.list_products()
    if not products:
        await message.reply_text("📦 Каталог пуст.")
        return
    lines = ["<b>Каталог</b>"]
    for product in products:
        kind = "товар" if product.category == ProductCategory.PRODUCT else "услуга"
        lines.append(
            f"• {escape(product.name)}: {product.price} за {escape(product.unit)} "
            f"({kind}) <code>{product.id}</code>"
        )
    await message.reply_text("\n".join(lines), parse_mode=ParseMode.HTML)


@require_role(*MANAGERS)
async def add_product(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Использование: /addproduct <категория> <цена> <название>
    Пример: /addproduct service 1500 Замена смесителя
    """
    message = update.effective_message
    args = context.args or []
    if len(args) < 3:
        await message.reply_text(
            "⚠️ Использование: /addproduct <service|product> <цена> <название>"
        )
        return
    try:
        price = Decimal(args[1].replace(",", "."))
    except InvalidOperation:
        await message.reply_text("⚠️ Цена должна быть числом.")
        return

    catalog: ProductCatalog = context.application.bot_data["catalog"]
    try:
        product = await catalog.add(
            Product(name=" ".join(args[2:]), price=price, category=args[0])
        )
    except ValidationError as e:
        await message.reply_text(f"⚠️ {describe_validation_error(e)}")
        return
    await message.reply_text(
        f"✅ Добавлено в каталог: {escape(product.name)} <code>{product.id}</code>",
        parse_mode=ParseMode.HTML,
    )


@require_role(*MANAGERS)
async def list_clients(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    clients: ClientDirectory = context.application.bot_data["clients"]
    rows = await clients.list_clients()
    if not rows:
        await message.reply_text("🏢 Клиентов пока нет.")
        return
    lines = ["<b>Клиенты</b>"]
    for client in rows:
        contact = f", {escape(client.phone)}" if client.phone else ""
        lines.append(
            f"• {escape(client.name)}: {escape(client.address)}{contact} "
            f"<code>{client.id[:8]}</code>"
        )
    await message.reply_text("\n".join(lines), parse_mode=ParseMode.HTML)


@require_role(*MANAGERS)
async def add_client(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Использование: /addclient <название>; <адрес>[; <телефон>]
    """
    message = update.effective_message
    parts = [p.strip() for p in " ".join(context.args or []).split(";")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        await message.reply_text(
            "⚠️ Использование: /addclient <название>; <адрес>[; <телефон>]"
        )
        return

    clients: ClientDirectory = context.application.bot_data["clients"]
    client = await clients.add(
        Client(
            name=parts[0],
            address=parts[1],
            phone=parts[2] if len(parts) > 2 and parts[2] else None,
            created_by=get_session(context).actor_id,
        )
    )
    await message.reply_text(f"✅ Клиент «{client.name}» добавлен.")


# --- Прямой доступ к таблицам ---


@require_role(Role.ADMIN)
async def db_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /db <json> выполняет команду над таблицами хранилища.

    Пример: /db {"action": "select", "table": "requests", "limit": 5}
    """
    message = update.effective_message
    user = update.effective_user
    if user.id not in context.bot_data["settings"].admin_ids:
        logger.warning(f"User {user.id} without admin ID tried to use /db.")
        await message.reply_text("⛔️ Команда доступна только администраторам из списка.")
        return

    payload = message.text.partition(" ")[2].strip()
    if not payload:
        await message.reply_text(
            'Использование: /db {"action": "select", "table": "requests", "limit": 5}\n'
            'Список таблиц: /db {"action": "tables"}'
        )
        return

    proxy: DbProxy = context.application.bot_data["db_proxy"]
    result = await proxy.execute(payload)
    logger.info(f"Admin {user.id} ran /db command, success={result.success}.")

    if not result.success:
        await message.reply_text(f"❌ {result.error}")
        return

    text = json.dumps(result.data, ensure_ascii=False, indent=2, default=str)
    for x in range(0, len(text), MAX_MESSAGE_LENGTH - 20):
        await message.reply_text(
            f"<pre>{escape(text[x : x + MAX_MESSAGE_LENGTH - 20])}</pre>",
            parse_mode=ParseMode.HTML,
        )


@require_role(*MANAGERS)
async def escalate_now(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Запускает эскалацию просроченных заявок вручную."""
    message = update.effective_message
    try:
        escalated = await context.application.bot_data["store"].escalate_stale_requests()
    except FieldServiceError as e:
        await reply_error(message, e)
        return
    await message.reply_text(f"⏫ Повышен приоритет заявок: {len(escalated)}.")
