"""
Сервисный модуль для управления справочником сотрудников.

Реализует получение сотрудников из хранилища, кэширование для повышения
производительности и отказоустойчивости, а также построение контекста
пользователя (Session) по его Telegram ID.
"""

import logging
import time
from typing import Optional

from fieldservice.core.exceptions import NotFoundError
from fieldservice.core.session import Session
from fieldservice.models.employee import ROLE_POSITIONS, Employee, Role
from fieldservice.models.schema import EMPLOYEES, from_row, to_row
from fieldservice.services.backend import DataBackend, OrderBy

logger = logging.getLogger(__name__)


class EmployeeDirectory:
    """
    Сервис для работы с данными сотрудников.
    """

    def __init__(
        self,
        backend: DataBackend,
        admin_ids: list[int] | None = None,
        cache_ttl_seconds: int = 60,
    ):
        self.backend = backend
        self.admin_ids = set(admin_ids or [])
        self._cache_ttl = cache_ttl_seconds
        self._employee_cache: list[Employee] | None = None
        self._cache_timestamp: float = 0.0
        # Любая запись в таблицу сотрудников (в том числе через /db) сбрасывает кэш
        self._unsubscribe = backend.subscribe(EMPLOYEES, self._on_change)

    def _on_change(self, table: str) -> None:
        self.invalidate()

    def invalidate(self) -> None:
        self._employee_cache = None
        self._cache_timestamp = 0
        logger.debug("Employee cache cleared.")

    async def get_all(self, active_only: bool = False) -> list[Employee]:
        current_time = time.time()
        if (
            self._employee_cache is not None
            and (current_time - self._cache_timestamp) < self._cache_ttl
        ):
            logger.debug("Returning employees from cache.")
            employees = self._employee_cache
        else:
            employees = await self._fetch(current_time)
        if active_only:
            return [e for e in employees if e.is_active]
        return employees

    async def _fetch(self, current_time: float) -> list[Employee]:
        logger.info("Cache is expired or empty. Fetching employees...")
        try:
            rows = await self.backend.select(EMPLOYEES, order=OrderBy("full_name"))
            self._employee_cache = [from_row(Employee, row) for row in rows]
            self._cache_timestamp = current_time
            logger.info(
                f"Successfully fetched and cached {len(self._employee_cache)} employees."
            )
            return self._employee_cache
        except Exception as e:
            logger.error(f"Failed to fetch employees: {e}", exc_info=True)
            if self._employee_cache is not None:
                logger.warning("Returning stale employee cache due to fetch failure.")
                return self._employee_cache
            return []

    async def get(self, employee_id: str) -> Optional[Employee]:
        for employee in await self.get_all():
            if employee.id == employee_id:
                return employee
        return None

    async def require(self, employee_id: str) -> Employee:
        employee = await self.get(employee_id)
        if employee is None:
            raise NotFoundError("Сотрудник", employee_id)
        return employee

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[Employee]:
        for employee in await self.get_all():
            if employee.telegram_id == telegram_id:
                return employee
        return None

    async def add(self, employee: Employee) -> Employee:
        if not employee.position:
            employee = employee.model_copy(
                update={"position": ROLE_POSITIONS[employee.role]}
            )
        await self.backend.insert(EMPLOYEES, to_row(employee))
        self.invalidate()
        logger.info(
            f"Employee {employee.id} ({employee.full_name}) added with role {employee.role.value}."
        )
        return employee

    async def update(self, employee_id: str, **changes) -> Employee:
        updated = await self.backend.update(EMPLOYEES, changes, {"id": employee_id})
        if not updated:
            raise NotFoundError("Сотрудник", employee_id)
        self.invalidate()
        logger.info(f"Employee {employee_id} updated: {sorted(changes)}.")
        return from_row(Employee, updated[0])

    async def set_active(self, employee_id: str, is_active: bool) -> Employee:
        return await self.update(employee_id, is_active=is_active)

    async def session_for(
        self, telegram_id: int, display_name: str
    ) -> Optional[Session]:
        """
        Строит контекст пользователя по Telegram ID.

        Роль берется из карточки активного сотрудника; ID из списка
        администраторов получают роль admin даже без карточки.
        Возвращает None, если у пользователя нет ни одной роли.
        """
        employee = await self.get_by_telegram_id(telegram_id)
        if employee is not None and not employee.is_active:
            logger.info(f"Employee {employee.id} is inactive, ignoring their role.")
            employee = None

        roles: set[Role] = set()
        if employee is not None:
            roles.add(employee.role)
        if telegram_id in self.admin_ids:
            roles.add(Role.ADMIN)
        if not roles:
            return None

        return Session(
            user_id=telegram_id,
            display_name=display_name,
            roles=frozenset(roles),
            employee=employee,
        )
