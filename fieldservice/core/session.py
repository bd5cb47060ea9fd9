"""
Контекст текущего пользователя.

Создается один раз на каждое обновление Telegram декоратором `require_role`
и явно передается в сервисы.
"""

from pydantic import BaseModel, ConfigDict

from fieldservice.models.employee import FSM_ROLES, MANAGER_ROLES, Employee, Role


class Session(BaseModel):
    """
    Атрибуты:
        user_id (int): Telegram ID пользователя.
        display_name (str): Имя для журналов, если нет карточки сотрудника.
        roles (frozenset[Role]): Роли пользователя.
        employee (Employee | None): Карточка сотрудника (у администратора может отсутствовать).
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    display_name: str
    roles: frozenset[Role] = frozenset()
    employee: Employee | None = None

    @property
    def is_manager(self) -> bool:
        return bool(self.roles & MANAGER_ROLES)

    @property
    def is_fsm_user(self) -> bool:
        return bool(self.roles & FSM_ROLES)

    @property
    def employee_id(self) -> str | None:
        return self.employee.id if self.employee else None

    @property
    def actor_id(self) -> str:
        return self.employee_id or str(self.user_id)

    @property
    def actor_name(self) -> str:
        return self.employee.full_name if self.employee else self.display_name

    @property
    def phone(self) -> str | None:
        return self.employee.phone if self.employee else None

    def has_role(self, *roles: Role | str) -> bool:
        wanted = {Role(r) for r in roles}
        return bool(self.roles & wanted)
