"""
Хранилище заявок: сами заявки, их позиции, чек-листы, фото и журнал.

Бизнес-правил здесь нет, кроме фильтрации, сортировки и повышения приоритета
залежавшихся заявок. Правила переходов статуса живут в LifecycleEngine.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable

from pydantic import ValidationError

from fieldservice.core.exceptions import InvalidInputError, NotFoundError
from fieldservice.core.session import Session
from fieldservice.core.timeutils import utcnow
from fieldservice.models.request import (
    OPEN_STATUSES,
    PRIORITY_LABELS,
    ChecklistItem,
    HistoryAction,
    HistoryEntry,
    Priority,
    RequestLineItem,
    RequestPhoto,
    RequestStatus,
    ServiceRequest,
    ServiceRequestCreate,
)
from fieldservice.models.schema import (
    REQUEST_CHECKLISTS,
    REQUEST_HISTORY,
    REQUEST_ITEMS,
    REQUEST_PHOTOS,
    REQUESTS,
    from_row,
    to_row,
)
from fieldservice.services.backend import DataBackend, OrderBy
from fieldservice.services.catalog_service import ProductCatalog
from fieldservice.services.employee_service import EmployeeDirectory

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_NAME = "Система"
MIN_ID_PREFIX = 6


def describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"])
        parts.append(f"{field}: {item['msg']}" if field else item["msg"])
    return "Некорректные данные: " + "; ".join(parts)


def is_stale(request: ServiceRequest, now: datetime, max_age: timedelta) -> bool:
    """Открытая заявка, которая висит дольше max_age и еще не срочная."""
    return (
        request.status in OPEN_STATUSES
        and request.priority != Priority.URGENT
        and now - request.created_at >= max_age
    )


def with_escalation(
    requests: list[ServiceRequest], now: datetime, max_age: timedelta
) -> list[ServiceRequest]:
    """Возвращает список, в котором залежавшиеся заявки показаны как срочные."""
    return [
        request.model_copy(update={"priority": Priority.URGENT})
        if is_stale(request, now, max_age)
        else request
        for request in requests
    ]


async def find_by_ref(backend: DataBackend, table: str, ref: str, entity: str) -> dict:
    """
    Строка по полному ID или его уникальному префиксу.

    Бот показывает сокращенные ID, поэтому пользователь может
    передать первые MIN_ID_PREFIX и более символов.
    """
    ref = ref.strip()
    rows = await backend.select(table, {"id": ref}, limit=1)
    if rows:
        return rows[0]
    if len(ref) >= MIN_ID_PREFIX:
        candidates = [
            row
            for row in await backend.select(table)
            if str(row.get("id", "")).startswith(ref)
        ]
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            raise InvalidInputError(
                f"Под «{ref}» подходит несколько записей, укажите идентификатор длиннее."
            )
    raise NotFoundError(entity, ref)


class RequestStore:
    def __init__(
        self,
        backend: DataBackend,
        employees: EmployeeDirectory,
        catalog: ProductCatalog,
        escalation_age: timedelta = timedelta(days=2),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.employees = employees
        self.catalog = catalog
        self.escalation_age = escalation_age
        self._clock = clock

    # --- Заявки ---

    async def list_requests(
        self,
        status: RequestStatus | None = None,
        priority: Priority | None = None,
        accepted_by: str | None = None,
    ) -> list[ServiceRequest]:
        """
        Возвращает заявки, новые первыми.

        Залежавшиеся открытые заявки показываются со срочным приоритетом;
        в хранилище их записывает escalate_stale_requests().
        """
        filters = {}
        if status is not None:
            filters["status"] = status
        if accepted_by is not None:
            filters["accepted_by"] = accepted_by
        rows = await self.backend.select(
            REQUESTS, filters or None, order=OrderBy("created_at", ascending=False)
        )
        requests = with_escalation(
            [from_row(ServiceRequest, row) for row in rows],
            self._clock(),
            self.escalation_age,
        )
        if priority is not None:
            requests = [r for r in requests if r.priority == priority]
        return requests

    async def escalate_stale_requests(
        self, now: datetime | None = None
    ) -> list[ServiceRequest]:
        """
        Записывает срочный приоритет всем залежавшимся открытым заявкам.

        Обновление условное (по старому приоритету и статусу), поэтому
        параллельное изменение приоритета или закрытие заявки не перетирается.
        """
        now = now or self._clock()
        rows = await self.backend.select(REQUESTS)
        escalated: list[ServiceRequest] = []
        for request in (from_row(ServiceRequest, row) for row in rows):
            if not is_stale(request, now, self.escalation_age):
                continue
            updated = await self.backend.update(
                REQUESTS,
                {"priority": Priority.URGENT, "updated_at": now},
                {"id": request.id, "priority": request.priority, "status": request.status},
            )
            if not updated:
                logger.info(f"Request {request.id} changed concurrently, skipping escalation.")
                continue
            age_days = (now - request.created_at).days
            await self.append_history(
                request.id,
                HistoryAction.PRIORITY_ESCALATED,
                f"Приоритет повышен: {PRIORITY_LABELS[request.priority]} -> "
                f"{PRIORITY_LABELS[Priority.URGENT]} (открыта {age_days} дн.)",
            )
            escalated.append(from_row(ServiceRequest, updated[0]))
        if escalated:
            logger.info(f"Escalated {len(escalated)} stale requests to urgent.")
        return escalated

    async def _find_row(self, ref: str) -> dict:
        return await find_by_ref(self.backend, REQUESTS, ref, "Заявка")

    async def get(self, request_id: str) -> ServiceRequest:
        """Заявка по полному ID или его уникальному префиксу, с данными сотрудников."""
        request = from_row(ServiceRequest, await self._find_row(request_id))
        joined = {}
        if request.assigned_to:
            joined["assigned_employee"] = await self.employees.get(request.assigned_to)
        if request.accepted_by:
            joined["accepted_employee"] = await self.employees.get(request.accepted_by)
        return request.model_copy(update=joined) if joined else request

    async def create_request(
        self, data: ServiceRequestCreate | dict, actor: Session | None = None
    ) -> ServiceRequest:
        if isinstance(data, dict):
            try:
                data = ServiceRequestCreate.model_validate(data)
            except ValidationError as e:
                raise InvalidInputError(describe_validation_error(e)) from e

        now = self._clock()
        request = ServiceRequest(**data.model_dump(), created_at=now, updated_at=now)
        await self.backend.insert(REQUESTS, to_row(request))
        await self.append_history(
            request.id,
            HistoryAction.CREATED,
            f"Заявка создана: {request.name}, {request.address}",
            actor,
        )
        logger.info(f"Request {request.id} created (priority {request.priority.value}).")
        return request

    async def update_request(
        self,
        request_id: str,
        patch: dict,
        expected_status: RequestStatus | None = None,
    ) -> ServiceRequest | None:
        """
        Обновляет заявку. Если передан expected_status, запись выполняется
        только при совпадении текущего статуса; иначе возвращается None.
        """
        filters: dict = {"id": request_id}
        if expected_status is not None:
            filters["status"] = expected_status
        rows = await self.backend.update(
            REQUESTS, {**patch, "updated_at": self._clock()}, filters
        )
        return from_row(ServiceRequest, rows[0]) if rows else None

    async def delete_request(self, request_id: str) -> bool:
        request = from_row(ServiceRequest, await self._find_row(request_id))
        for table in (REQUEST_ITEMS, REQUEST_CHECKLISTS, REQUEST_PHOTOS, REQUEST_HISTORY):
            await self.backend.delete(table, {"request_id": request.id})
        deleted = await self.backend.delete(REQUESTS, {"id": request.id})
        logger.warning(f"Request {request.id} deleted with all related rows.")
        return bool(deleted)

    # --- Позиции (товары и услуги) ---

    async def list_line_items(self, request_id: str | None = None) -> list[RequestLineItem]:
        filters = {"request_id": request_id} if request_id else None
        rows = await self.backend.select(
            REQUEST_ITEMS, filters, order=OrderBy("created_at")
        )
        return [from_row(RequestLineItem, row) for row in rows]

    async def get_line_item(self, item_id: str) -> RequestLineItem:
        row = await find_by_ref(self.backend, REQUEST_ITEMS, item_id, "Позиция")
        return from_row(RequestLineItem, row)

    async def add_line_item(
        self,
        request_id: str,
        product_id: str,
        quantity: int,
        actor: Session | None = None,
    ) -> RequestLineItem:
        """Добавляет позицию, фиксируя текущую цену товара."""
        request = from_row(ServiceRequest, await self._find_row(request_id))
        product = await self.catalog.get(product_id)
        if not product.is_active:
            raise InvalidInputError(f"Товар «{product.name}» снят с продажи.")
        try:
            item = RequestLineItem(
                request_id=request.id,
                product_id=product.id,
                product_name=product.name,
                unit=product.unit,
                category=product.category,
                quantity=quantity,
                price=product.price,
            )
        except ValidationError as e:
            raise InvalidInputError(describe_validation_error(e)) from e

        await self.backend.insert(REQUEST_ITEMS, to_row(item))
        await self.append_history(
            request.id,
            HistoryAction.ITEM_ADDED,
            f"Добавлено: {product.name} × {quantity} {product.unit} по {product.price}",
            actor,
        )
        return item

    async def remove_line_item(
        self, item_id: str, actor: Session | None = None
    ) -> RequestLineItem:
        item = await self.get_line_item(item_id)
        await self.backend.delete(REQUEST_ITEMS, {"id": item.id})
        await self.append_history(
            item.request_id,
            HistoryAction.ITEM_REMOVED,
            f"Удалено: {item.product_name} × {item.quantity} {item.unit}",
            actor,
        )
        return item

    # --- Чек-лист ---

    async def list_checklist(self, request_id: str) -> list[ChecklistItem]:
        rows = await self.backend.select(
            REQUEST_CHECKLISTS, {"request_id": request_id}, order=OrderBy("order_index")
        )
        return [from_row(ChecklistItem, row) for row in rows]

    async def get_checklist_item(self, item_id: str) -> ChecklistItem:
        row = await find_by_ref(self.backend, REQUEST_CHECKLISTS, item_id, "Пункт чек-листа")
        return from_row(ChecklistItem, row)

    async def insert_checklist_item(self, item: ChecklistItem) -> ChecklistItem:
        await self.backend.insert(REQUEST_CHECKLISTS, to_row(item))
        return item

    async def update_checklist_item(self, item_id: str, patch: dict) -> ChecklistItem:
        rows = await self.backend.update(REQUEST_CHECKLISTS, patch, {"id": item_id})
        if not rows:
            raise NotFoundError("Пункт чек-листа", item_id)
        return from_row(ChecklistItem, rows[0])

    async def delete_checklist_item(self, item_id: str) -> None:
        await self.backend.delete(REQUEST_CHECKLISTS, {"id": item_id})

    # --- Фото ---

    async def list_photos(self, request_id: str) -> list[RequestPhoto]:
        rows = await self.backend.select(
            REQUEST_PHOTOS,
            {"request_id": request_id},
            order=OrderBy("created_at", ascending=False),
        )
        return [from_row(RequestPhoto, row) for row in rows]

    async def add_photo(
        self,
        request_id: str,
        content: bytes,
        filename: str,
        actor: Session | None = None,
        caption: str | None = None,
    ) -> RequestPhoto:
        path = f"requests/{request_id}/{int(time.time() * 1000)}_{filename}"
        url = await self.backend.upload_file(path, content)
        photo = RequestPhoto(
            request_id=request_id,
            photo_url=url,
            caption=caption,
            uploaded_by=actor.actor_id if actor else None,
        )
        await self.backend.insert(REQUEST_PHOTOS, to_row(photo))
        await self.append_history(
            request_id, HistoryAction.PHOTO_ADDED, caption or "Добавлено фото", actor
        )
        return photo

    # --- Журнал ---

    async def list_history(self, request_id: str) -> list[HistoryEntry]:
        rows = await self.backend.select(
            REQUEST_HISTORY, {"request_id": request_id}, order=OrderBy("created_at")
        )
        return [from_row(HistoryEntry, row) for row in rows]

    async def append_history(
        self,
        request_id: str,
        action: HistoryAction,
        description: str = "",
        actor: Session | None = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            request_id=request_id,
            action=action,
            description=description,
            actor_id=actor.actor_id if actor else None,
            actor_name=actor.actor_name if actor else SYSTEM_ACTOR_NAME,
            created_at=self._clock(),
        )
        await self.backend.insert(REQUEST_HISTORY, to_row(entry))
        return entry
