"""
Модели данных, связанные с сотрудниками.
"""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from fieldservice.core.timeutils import utcnow


class Role(str, Enum):
    ADMIN = "admin"
    DIRECTOR = "director"
    DISPATCHER = "dispatcher"
    MASTER = "master"
    ENGINEER = "engineer"
    USER = "user"


MANAGER_ROLES = frozenset({Role.ADMIN, Role.DIRECTOR, Role.DISPATCHER})
FSM_ROLES = MANAGER_ROLES | {Role.MASTER, Role.ENGINEER}

# Единственная таблица соответствия роли и должности по умолчанию
ROLE_POSITIONS: dict[Role, str] = {
    Role.ADMIN: "Администратор",
    Role.DIRECTOR: "Директор",
    Role.DISPATCHER: "Диспетчер",
    Role.MASTER: "Мастер",
    Role.ENGINEER: "Инженер",
    Role.USER: "Сотрудник",
}


def role_for_position(position: str | None) -> Role | None:
    """Обратный поиск роли по названию должности (без учета регистра)."""
    if not position:
        return None
    wanted = position.strip().casefold()
    for role, label in ROLE_POSITIONS.items():
        if label.casefold() == wanted or role.value == wanted:
            return role
    return None


class Employee(BaseModel):
    """
    Модель сотрудника, представляющая строку листа 'employees'.

    Атрибуты:
        telegram_id (int | None): ID пользователя Telegram, если сотрудник пользуется ботом.
        full_name (str): ФИО сотрудника.
        position (str | None): Должность в свободной форме.
        role (Role): Роль в системе, определяет права доступа.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    telegram_id: int | None = None
    full_name: str = Field(..., min_length=1)
    phone: str | None = None
    position: str | None = None
    role: Role = Role.MASTER
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def position_label(self) -> str:
        return self.position or ROLE_POSITIONS[self.role]
