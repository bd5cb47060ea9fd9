"""
Интеграционные тесты для обработчиков административных команд.
"""

import io
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from fieldservice.handlers.admin import add_employee, db_command, list_employees
from fieldservice.handlers.reports import parse_period, report_command
from fieldservice.models.employee import Role
from fieldservice.services.db_proxy import DbProxy
from fieldservice.services.reporting import ReportService

from tests.fakes import DISPATCHER, MASTER

# --- Фикстуры ---


@pytest.fixture
def mock_update_context_for_handlers(
    mocker, backend, employees, store
) -> tuple[MagicMock, MagicMock]:
    """Фикстура для создания моков Update и Context для обработчиков."""
    mock_update = mocker.MagicMock()
    mock_context = mocker.MagicMock()

    mock_update.effective_message.reply_text = mocker.AsyncMock()
    mock_update.effective_message.reply_document = mocker.AsyncMock()
    # Явно симулируем обычное сообщение, чтобы избежать ошибок в декораторе
    mock_update.callback_query = None
    mock_update.effective_user.first_name = "Анна"

    bot_data = {
        "employees": employees,
        "store": store,
        "reports": ReportService(store, employees, tz_name="Europe/Moscow"),
        "db_proxy": DbProxy(backend, default_limit=10),
        "settings": SimpleNamespace(admin_ids=[100], display_timezone="Europe/Moscow"),
    }
    mock_context.application.bot_data = bot_data
    mock_context.bot_data = bot_data
    mock_context.user_data = {}
    mock_context.args = []

    return mock_update, mock_context


# --- Тесты ---


@pytest.mark.asyncio
async def test_list_employees_success(mock_update_context_for_handlers):
    """
    Тест: Команда /employees выводит заголовок и карточку каждого сотрудника.
    """
    # Arrange
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = DISPATCHER.telegram_id

    # Act
    await list_employees(mock_update, mock_context)

    # Assert
    reply = mock_update.effective_message.reply_text
    # 1 заголовок + 3 карточки
    assert reply.await_count == 4
    first_card = reply.await_args_list[1].kwargs
    assert "Иванова Анна" in first_card["text"]
    button = first_card["reply_markup"].inline_keyboard[0][0]
    assert button.callback_data == f"deactivate_emp:{DISPATCHER.id}"


@pytest.mark.asyncio
async def test_list_employees_denied_for_master(mock_update_context_for_handlers):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = MASTER.telegram_id

    await list_employees(mock_update, mock_context)

    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⛔️ У вас нет доступа для выполнения этой команды."
    )


@pytest.mark.asyncio
async def test_add_employee(mock_update_context_for_handlers, employees):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = 100
    mock_context.args = ["555", "engineer", "Кузнецов", "Олег"]

    await add_employee(mock_update, mock_context)

    employee = await employees.get_by_telegram_id(555)
    assert employee.full_name == "Кузнецов Олег"
    assert employee.role == Role.ENGINEER


@pytest.mark.asyncio
async def test_add_employee_by_position_name(mock_update_context_for_handlers, employees):
    """
    Тест: Роль можно указать названием должности.
    """
    # Arrange
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = 100
    mock_context.args = ["556", "Диспетчер", "Смирнова", "Ольга"]

    # Act
    await add_employee(mock_update, mock_context)

    # Assert
    employee = await employees.get_by_telegram_id(556)
    assert employee.role == Role.DISPATCHER
    assert employee.position_label == "Диспетчер"


@pytest.mark.asyncio
async def test_add_employee_unknown_role(mock_update_context_for_handlers, employees):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = 100
    mock_context.args = ["557", "Сантехник", "Олег"]

    await add_employee(mock_update, mock_context)

    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⚠️ Неизвестная роль: Сантехник"
    )
    assert await employees.get_by_telegram_id(557) is None


@pytest.mark.asyncio
async def test_add_employee_wrong_format(mock_update_context_for_handlers, employees):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = 100
    mock_context.args = ["abc", "engineer", "Олег"]

    await add_employee(mock_update, mock_context)

    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⚠️ Ошибка: Telegram ID должен быть числом."
    )
    assert len(await employees.get_all()) == 3


@pytest.mark.asyncio
async def test_db_command_select(mock_update_context_for_handlers):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = 100
    mock_update.effective_message.text = (
        '/db {"action": "select", "table": "employees", "columns": "full_name", "limit": 1}'
    )

    await db_command(mock_update, mock_context)

    text = mock_update.effective_message.reply_text.await_args.args[0]
    assert text.startswith("<pre>")
    assert "full_name" in text


@pytest.mark.asyncio
async def test_db_command_reports_error(mock_update_context_for_handlers):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = 100
    mock_update.effective_message.text = '/db {"action": "delete", "table": "employees"}'

    await db_command(mock_update, mock_context)

    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "❌ Table and where condition are required"
    )


@pytest.mark.asyncio
async def test_report_command_sends_summary_and_csv(
    mock_update_context_for_handlers, new_request
):
    """
    Тест: /report отвечает текстом сводки и CSV-файлом.
    """
    # Arrange
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = DISPATCHER.telegram_id
    mock_context.args = ["2024-05-01", "2024-05-31"]

    # Act
    await report_command(mock_update, mock_context)

    # Assert
    summary_text = mock_update.effective_message.reply_text.await_args.args[0]
    assert "Всего заявок: <b>1</b>" in summary_text
    document = mock_update.effective_message.reply_document.await_args.kwargs
    assert document["filename"] == "report_2024-05-01_2024-05-31.csv"
    assert isinstance(document["document"], io.BytesIO)
    assert document["document"].getvalue().startswith(b"\xef\xbb\xbf")


@pytest.mark.asyncio
async def test_report_command_bad_date(mock_update_context_for_handlers):
    mock_update, mock_context = mock_update_context_for_handlers
    mock_update.effective_user.id = DISPATCHER.telegram_id
    mock_context.args = ["01.05.2024"]

    await report_command(mock_update, mock_context)

    mock_update.effective_message.reply_document.assert_not_awaited()


def test_parse_period_defaults_to_current_month():
    date_from, date_to = parse_period([], "Europe/Moscow")
    assert date_from.day == 1
    assert (date_from.year, date_from.month) == (date_to.year, date_to.month)
