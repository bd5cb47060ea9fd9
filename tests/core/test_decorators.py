"""
Тесты для декоратора @require_role.
"""

import pytest

from fieldservice.core.decorators import MANAGERS, require_role
from fieldservice.models.employee import Role
from fieldservice.services.employee_service import EmployeeDirectory

from tests.fakes import MASTER, make_session

# --- Фикстуры для подготовки тестового окружения ---


@pytest.fixture
def mock_update_context(mocker):
    """Фикстура для создания моков Update и Context."""
    mock_update = mocker.MagicMock()
    mock_context = mocker.MagicMock()

    mock_update.effective_message.reply_text = mocker.AsyncMock()
    mock_update.callback_query = None

    # Симулируем справочник сотрудников в bot_data
    directory = mocker.MagicMock(spec=EmployeeDirectory)
    directory.session_for = mocker.AsyncMock()
    mock_context.application.bot_data = {"employees": directory}
    mock_context.user_data = {}

    return mock_update, mock_context


# --- Тесты ---


@pytest.mark.asyncio
async def test_require_role_success(mock_update_context, mocker):
    """
    Тест: Пользователь имеет необходимую роль, доступ разрешен.
    """
    # Arrange (Подготовка)
    mock_update, mock_context = mock_update_context
    directory = mock_context.application.bot_data["employees"]

    mock_update.effective_user.id = 100
    admin_session = make_session(None, Role.ADMIN, user_id=100)
    directory.session_for.return_value = admin_session

    dummy_handler = mocker.AsyncMock()

    # Act (Действие)
    decorated_handler = require_role(Role.ADMIN)(dummy_handler)
    await decorated_handler(mock_update, mock_context)

    # Assert (Проверка)
    dummy_handler.assert_awaited_once()
    # Контекст пользователя сохранен для обработчика
    assert mock_context.user_data["session"] == admin_session


@pytest.mark.asyncio
async def test_require_role_any_of_roles(mock_update_context, mocker):
    """
    Тест: Достаточно одной из перечисленных ролей.
    """
    # Arrange
    mock_update, mock_context = mock_update_context
    directory = mock_context.application.bot_data["employees"]
    mock_update.effective_user.id = 400
    directory.session_for.return_value = make_session(None, Role.DISPATCHER, user_id=400)
    dummy_handler = mocker.AsyncMock()

    # Act
    await require_role(*MANAGERS)(dummy_handler)(mock_update, mock_context)

    # Assert
    dummy_handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_require_role_wrong_role(mock_update_context, mocker):
    """
    Тест: У пользователя другая роль, доступ запрещен.
    """
    # Arrange
    mock_update, mock_context = mock_update_context
    directory = mock_context.application.bot_data["employees"]

    mock_update.effective_user.id = MASTER.telegram_id
    directory.session_for.return_value = make_session(MASTER)

    dummy_handler = mocker.AsyncMock()

    # Act
    decorated_handler = require_role(Role.ADMIN)(dummy_handler)
    await decorated_handler(mock_update, mock_context)

    # Assert
    # Проверяем, что оригинальный обработчик НЕ был вызван
    dummy_handler.assert_not_awaited()
    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⛔️ У вас нет доступа для выполнения этой команды."
    )
    assert "session" not in mock_context.user_data


@pytest.mark.asyncio
async def test_require_role_unauthorized(mock_update_context, mocker):
    """
    Тест: Пользователь не найден в справочнике, доступ запрещен.
    """
    # Arrange
    mock_update, mock_context = mock_update_context
    directory = mock_context.application.bot_data["employees"]

    mock_update.effective_user.id = 999
    directory.session_for.return_value = None

    dummy_handler = mocker.AsyncMock()

    # Act
    decorated_handler = require_role(Role.ADMIN)(dummy_handler)
    await decorated_handler(mock_update, mock_context)

    # Assert
    dummy_handler.assert_not_awaited()
    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⛔️ У вас нет доступа для выполнения этой команды."
    )


@pytest.mark.asyncio
async def test_require_role_callback_query_gets_alert(mock_update_context, mocker):
    """
    Тест: При нажатии на кнопку без прав показывается всплывающее предупреждение.
    """
    # Arrange
    mock_update, mock_context = mock_update_context
    mock_update.callback_query = mocker.MagicMock()
    mock_update.callback_query.answer = mocker.AsyncMock()
    mock_context.application.bot_data["employees"].session_for.return_value = None
    dummy_handler = mocker.AsyncMock()

    # Act
    await require_role(Role.MASTER)(dummy_handler)(mock_update, mock_context)

    # Assert
    dummy_handler.assert_not_awaited()
    mock_update.callback_query.answer.assert_awaited_once_with(
        "⛔️ У вас нет доступа для этого действия.", show_alert=True
    )
    mock_update.effective_message.reply_text.assert_not_awaited()
