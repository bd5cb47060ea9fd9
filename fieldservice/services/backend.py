"""
Контракт хранилища данных, от которого зависят сервисы FSM.

Хранилище табличное: выборка с фильтрами по равенству, сортировкой и лимитом,
вставка, обновление и удаление по фильтру, загрузка файлов и уведомления
об изменениях таблицы внутри процесса.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, NamedTuple, Protocol

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]


class OrderBy(NamedTuple):
    column: str
    ascending: bool = True


def as_cell(value: Any) -> str:
    """Приводит значение к виду ячейки таблицы для сравнения в фильтрах."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def to_cell_value(value: Any) -> Any:
    """Значение для записи в ячейку (RAW): JSON-совместимый скаляр."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return value


def matches(row: dict, filters: dict | None) -> bool:
    if not filters:
        return True
    return all(as_cell(row.get(key)) == as_cell(value) for key, value in filters.items())


def _sort_key(value: Any) -> tuple:
    text = as_cell(value)
    try:
        return (0, float(text), "")
    except ValueError:
        return (1, 0.0, text)


def sort_rows(rows: list[dict], order: OrderBy | None) -> list[dict]:
    if order is None:
        return rows
    return sorted(
        rows, key=lambda r: _sort_key(r.get(order.column)), reverse=not order.ascending
    )


class DataBackend(Protocol):
    async def select(
        self,
        table: str,
        filters: dict | None = None,
        order: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict]: ...

    async def insert(self, table: str, row: dict) -> dict: ...

    async def update(self, table: str, patch: dict, filters: dict) -> list[dict]: ...

    async def delete(self, table: str, filters: dict) -> list[dict]: ...

    def subscribe(self, table: str, on_change: ChangeCallback) -> Callable[[], None]: ...

    async def upload_file(
        self, path: str, content: bytes, mimetype: str = "image/jpeg"
    ) -> str: ...

    def tables(self) -> list[str]: ...


class ChangeNotifier:
    """Подписки на изменения таблиц внутри процесса."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = {}

    def subscribe(self, table: str, on_change: ChangeCallback) -> Callable[[], None]:
        callbacks = self._subscribers.setdefault(table, [])
        callbacks.append(on_change)

        def unsubscribe() -> None:
            if on_change in callbacks:
                callbacks.remove(on_change)

        return unsubscribe

    def notify(self, table: str) -> None:
        for callback in list(self._subscribers.get(table, [])):
            try:
                callback(table)
            except Exception as e:
                logger.error(
                    f"Change subscriber for table '{table}' failed: {e}", exc_info=True
                )
