"""
Реестр таблиц: имя листа в Google-таблице -> модель его строк.
"""

from pydantic import BaseModel

from fieldservice.models.client import Client
from fieldservice.models.employee import Employee
from fieldservice.models.product import Product
from fieldservice.models.request import (
    ChecklistItem,
    HistoryEntry,
    RequestLineItem,
    RequestPhoto,
    ServiceRequest,
)
from fieldservice.models.task import Task

REQUESTS = "requests"
REQUEST_ITEMS = "request_items"
REQUEST_CHECKLISTS = "request_checklists"
REQUEST_PHOTOS = "request_photos"
REQUEST_HISTORY = "request_history"
EMPLOYEES = "employees"
PRODUCTS = "products"
CLIENTS = "clients"
TASKS = "tasks"

TABLE_MODELS: dict[str, type[BaseModel]] = {
    REQUESTS: ServiceRequest,
    REQUEST_ITEMS: RequestLineItem,
    REQUEST_CHECKLISTS: ChecklistItem,
    REQUEST_PHOTOS: RequestPhoto,
    REQUEST_HISTORY: HistoryEntry,
    EMPLOYEES: Employee,
    PRODUCTS: Product,
    CLIENTS: Client,
    TASKS: Task,
}


def table_columns(model: type[BaseModel]) -> list[str]:
    """Сохраняемые колонки модели в порядке объявления полей."""
    return [name for name, field in model.model_fields.items() if not field.exclude]


def table_schema() -> dict[str, list[str]]:
    return {table: table_columns(model) for table, model in TABLE_MODELS.items()}


def to_row(record: BaseModel) -> dict:
    """Сериализует модель в строку таблицы (JSON-совместимые значения)."""
    return record.model_dump(mode="json")


def from_row(model: type[BaseModel], record: dict):
    """
    Разбирает строку таблицы в модель.

    Пустые ячейки пропускаются, чтобы сработали значения по умолчанию;
    булевы ячейки Google Sheets приходят строками TRUE/FALSE.
    """
    data = {}
    for key, value in record.items():
        field = model.model_fields.get(key)
        if field is None or value is None or value == "":
            continue
        if field.annotation is bool and isinstance(value, str):
            value = value.strip().upper() == "TRUE"
        data[key] = value
    return model.model_validate(data)
