"""
Модели данных, связанные с заявкой на обслуживание.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from fieldservice.core.timeutils import utcnow
from fieldservice.models.employee import Employee
from fieldservice.models.product import ProductCategory


def _new_id() -> str:
    return str(uuid.uuid4())


class RequestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.IN_PROGRESS})

STATUS_LABELS: dict[RequestStatus, str] = {
    RequestStatus.PENDING: "🆕 Ожидает",
    RequestStatus.IN_PROGRESS: "🛠 В работе",
    RequestStatus.COMPLETED: "✅ Выполнено",
    RequestStatus.CANCELLED: "🚫 Отменено",
}


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_LABELS: dict[Priority, str] = {
    Priority.LOW: "Низкий",
    Priority.MEDIUM: "Средний",
    Priority.HIGH: "Высокий",
    Priority.URGENT: "Срочно!",
}


class HistoryAction(str, Enum):
    CREATED = "created"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    PHOTO_ADDED = "photo_added"
    CHECKLIST_ADDED = "checklist_added"
    CHECKLIST_TOGGLED = "checklist_toggled"
    CHECKLIST_REMOVED = "checklist_removed"
    NOTE_ADDED = "note_added"
    PRIORITY_ESCALATED = "priority_escalated"


class ServiceRequest(BaseModel):
    """
    Модель заявки клиента на обслуживание домофона или видеонаблюдения.

    Поля `assigned_employee` и `accepted_employee` заполняются при чтении
    одной заявки и не сохраняются в таблицу.
    """

    id: str = Field(default_factory=_new_id)
    name: str
    phone: str
    address: str
    message: str = ""
    status: RequestStatus = RequestStatus.PENDING
    priority: Priority = Priority.MEDIUM
    assigned_to: str | None = None
    accepted_by: str | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str | None = None
    decline_reason: str | None = None
    cancel_reason: str | None = None
    work_report: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    assigned_employee: Employee | None = Field(default=None, exclude=True)
    accepted_employee: Employee | None = Field(default=None, exclude=True)

    @property
    def short_id(self) -> str:
        return self.id[:8]


class ServiceRequestCreate(BaseModel):
    """Входные данные новой заявки (из бота или формы обратной связи)."""

    name: str = Field(..., min_length=1, max_length=200)
    phone: str
    address: str = Field(..., min_length=1, max_length=500)
    message: str = Field(default="", max_length=4000)
    priority: Priority = Priority.MEDIUM
    assigned_to: str | None = None

    @field_validator("name", "address", "message", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        value = value.strip()
        if len(re.sub(r"\D", "", value)) < 5:
            raise ValueError("телефон должен содержать не менее 5 цифр")
        return value


class RequestLineItem(BaseModel):
    """Позиция заявки. Цена, название и категория копируются из товара при добавлении."""

    id: str = Field(default_factory=_new_id)
    request_id: str
    product_id: str
    product_name: str = ""
    unit: str = "шт"
    category: ProductCategory = ProductCategory.SERVICE
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value):
        return ProductCategory.parse(value)

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity


class ChecklistItem(BaseModel):
    id: str = Field(default_factory=_new_id)
    request_id: str
    item_text: str = Field(..., min_length=1)
    is_completed: bool = False
    completed_at: datetime | None = None
    order_index: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class RequestPhoto(BaseModel):
    id: str = Field(default_factory=_new_id)
    request_id: str
    photo_url: str
    caption: str | None = None
    uploaded_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class HistoryEntry(BaseModel):
    """Строка журнала заявки. Журнал только дополняется."""

    id: str = Field(default_factory=_new_id)
    request_id: str
    action: HistoryAction
    description: str = ""
    actor_id: str | None = None
    actor_name: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
