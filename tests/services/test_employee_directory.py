"""
Тесты для EmployeeDirectory.
"""

import pytest

from fieldservice.core.exceptions import NotFoundError
from fieldservice.models.employee import Employee, Role

from tests.fakes import MASTER


@pytest.mark.asyncio
async def test_get_all_employees_success(employees):
    """Тест: Успешное получение и парсинг списка сотрудников."""
    result = await employees.get_all()
    assert len(result) == 3
    assert all(isinstance(e, Employee) for e in result)
    # Сортировка по ФИО
    assert [e.full_name for e in result] == sorted(e.full_name for e in result)


@pytest.mark.asyncio
async def test_get_all_employees_caching(employees, backend, mocker):
    """Тест: Повторный запрос берется из кэша."""
    spy = mocker.spy(backend, "select")
    first = await employees.get_all()
    second = await employees.get_all()
    assert first is second
    spy.assert_called_once()


@pytest.mark.asyncio
async def test_backend_change_invalidates_cache(employees, backend, mocker):
    """Тест: Запись в таблицу сотрудников в обход сервиса сбрасывает кэш."""
    await employees.get_all()
    await backend.update("employees", {"full_name": "Петров П."}, {"id": MASTER.id})

    spy = mocker.spy(backend, "select")
    master = await employees.get(MASTER.id)
    assert master.full_name == "Петров П."
    spy.assert_called_once()


@pytest.mark.asyncio
async def test_get_all_employees_api_error_returns_stale_cache(employees, backend, mocker):
    """Тест: При ошибке хранилища возвращается устаревший кэш."""
    cached = await employees.get_all()
    employees._cache_timestamp = 0
    mocker.patch.object(backend, "select", side_effect=Exception("Network Error"))
    assert await employees.get_all() == cached


@pytest.mark.asyncio
async def test_get_all_employees_api_error_without_cache(employees, backend, mocker):
    mocker.patch.object(backend, "select", side_effect=Exception("Network Error"))
    assert await employees.get_all() == []


@pytest.mark.asyncio
async def test_add_employee_defaults_position(employees):
    employee = await employees.add(
        Employee(telegram_id=500, full_name="Новый Сотрудник", role=Role.ENGINEER)
    )
    assert employee.position == "Инженер"
    assert (await employees.get_by_telegram_id(500)).id == employee.id


@pytest.mark.asyncio
async def test_require_missing_employee(employees):
    with pytest.raises(NotFoundError):
        await employees.require("nobody")


@pytest.mark.asyncio
async def test_session_for_employee(employees):
    session = await employees.session_for(MASTER.telegram_id, "tg-name")
    assert session.roles == frozenset({Role.MASTER})
    assert session.employee_id == MASTER.id
    assert session.actor_name == MASTER.full_name
    assert session.is_fsm_user and not session.is_manager


@pytest.mark.asyncio
async def test_session_for_admin_id_without_card(employees):
    """Тест: ID из списка администраторов получает роль admin без карточки."""
    session = await employees.session_for(100, "Boss")
    assert session.roles == frozenset({Role.ADMIN})
    assert session.employee is None
    assert session.actor_id == "100"
    assert session.actor_name == "Boss"


@pytest.mark.asyncio
async def test_session_for_unknown_or_inactive(employees):
    assert await employees.session_for(999, "Stranger") is None

    await employees.set_active(MASTER.id, False)
    assert await employees.session_for(MASTER.telegram_id, "Петр") is None
