"""
Жизненный цикл заявки: принятие, отказ, отмена, выполнение.

Каждый переход проверяется графом допустимых статусов и правами пользователя,
записывается условным обновлением (по текущему статусу) и сопровождается
строкой журнала. Если журнал записать не удалось, заявка возвращается
в прежнее состояние.
"""

import logging
from datetime import datetime
from typing import Callable

from fieldservice.core.exceptions import (
    AlreadyAcceptedError,
    InvalidInputError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from fieldservice.core.fsm import TransitionValidator
from fieldservice.core.session import Session
from fieldservice.core.timeutils import format_datetime, utcnow
from fieldservice.models.request import (
    ChecklistItem,
    HistoryAction,
    RequestLineItem,
    RequestPhoto,
    RequestStatus,
    ServiceRequest,
)
from fieldservice.services.request_store import RequestStore

logger = logging.getLogger(__name__)

REQUEST_FSM = TransitionValidator(
    {
        RequestStatus.PENDING: {RequestStatus.IN_PROGRESS, RequestStatus.CANCELLED},
        RequestStatus.IN_PROGRESS: {
            RequestStatus.PENDING,
            RequestStatus.COMPLETED,
            RequestStatus.CANCELLED,
        },
        RequestStatus.COMPLETED: set(),
        RequestStatus.CANCELLED: set(),
    }
)


def _append(notes: str | None, block: str) -> str:
    return f"{notes}\n\n{block}" if notes else block


def _require_text(value: str | None, what: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidInputError(f"Укажите {what}.")
    return value


class LifecycleEngine:
    def __init__(
        self,
        store: RequestStore,
        tz_name: str = "Europe/Moscow",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.tz_name = tz_name
        self._clock = clock

    # --- Права ---

    @staticmethod
    def is_owner(request: ServiceRequest, session: Session) -> bool:
        return session.employee_id is not None and session.employee_id == request.accepted_by

    def can_edit(self, request: ServiceRequest, session: Session) -> bool:
        return request.status == RequestStatus.IN_PROGRESS and (
            self.is_owner(request, session) or session.is_manager
        )

    def _require_owner_or_manager(
        self, request: ServiceRequest, session: Session, action: str
    ) -> None:
        if self.is_owner(request, session) or session.is_manager:
            return
        logger.warning(
            f"User {session.user_id} tried to {action} request {request.id}, "
            f"but it is accepted by {request.accepted_by}."
        )
        raise PermissionDeniedError(
            "Это действие доступно только сотруднику, принявшему заявку, или руководителю."
        )

    async def _editable(self, request_id: str, session: Session) -> ServiceRequest:
        request = await self.store.get(request_id)
        if not self.can_edit(request, session):
            logger.warning(
                f"User {session.user_id} cannot edit request {request.id} "
                f"with status '{request.status.value}'."
            )
            raise PermissionDeniedError(
                "Изменять заявку можно, только пока она в работе, "
                "и только принявшему ее сотруднику или руководителю."
            )
        return request

    def _stamp(self, moment: datetime) -> str:
        return format_datetime(moment, self.tz_name)

    # --- Переходы ---

    async def _transition(
        self,
        request: ServiceRequest,
        target: RequestStatus,
        patch: dict,
        action: HistoryAction,
        description: str,
        session: Session,
    ) -> ServiceRequest:
        REQUEST_FSM.assert_can_transition(request.status, target)
        previous = {key: getattr(request, key) for key in patch}

        updated = await self.store.update_request(
            request.id, {**patch, "status": target}, expected_status=request.status
        )
        if updated is None:
            await self._raise_conflict(request, target)

        try:
            await self.store.append_history(request.id, action, description, session)
        except Exception:
            logger.error(
                f"History write failed for request {request.id} ({action.value}); "
                f"restoring status '{request.status.value}'.",
                exc_info=True,
            )
            try:
                await self.store.update_request(
                    request.id,
                    {**previous, "status": request.status},
                    expected_status=target,
                )
            except Exception as rollback_error:
                logger.error(
                    f"Failed to restore request {request.id}: {rollback_error}",
                    exc_info=True,
                )
            raise

        logger.info(
            f"Request {request.id}: {request.status.value} -> {target.value} "
            f"by user {session.user_id} ({session.actor_name})."
        )
        return updated

    async def _raise_conflict(self, request: ServiceRequest, target: RequestStatus):
        current = await self.store.get(request.id)
        logger.warning(
            f"Conditional update of request {request.id} failed: expected "
            f"'{request.status.value}', found '{current.status.value}'."
        )
        if target == RequestStatus.IN_PROGRESS and current.status == RequestStatus.IN_PROGRESS:
            raise AlreadyAcceptedError(current.status.value, current.accepted_by)
        raise InvalidTransitionError(
            current.status.value,
            target.value,
            "Статус заявки уже изменился. Обновите данные и повторите действие.",
        )

    async def accept(self, request_id: str, session: Session) -> ServiceRequest:
        """Сотрудник забирает заявку из общего пула. Выигрывает только первый."""
        if not session.is_fsm_user:
            raise PermissionDeniedError("Принимать заявки могут только сотрудники FSM.")
        request = await self.store.get(request_id)
        if request.status == RequestStatus.IN_PROGRESS:
            logger.warning(
                f"User {session.user_id} tried to accept request {request.id}, "
                f"but it is already accepted by {request.accepted_by}."
            )
            raise AlreadyAcceptedError(request.status.value, request.accepted_by)

        if (
            request.assigned_to
            and session.employee_id
            and request.assigned_to != session.employee_id
        ):
            logger.warning(
                f"Request {request.id} is assigned to {request.assigned_to}, "
                f"but accepted by {session.employee_id}."
            )

        now = self._clock()
        line = f"Принял: {session.actor_name}"
        if session.phone:
            line += f", тел: {session.phone}"
        line += f" • {self._stamp(now)}"

        patch = {
            "accepted_by": session.employee_id,
            "accepted_at": now,
            # Принятие начинает заметки заново, прошлые блоки остаются в истории
            "notes": line,
        }
        return await self._transition(
            request, RequestStatus.IN_PROGRESS, patch, HistoryAction.ACCEPTED, line, session
        )

    async def decline(
        self, request_id: str, session: Session, reason: str
    ) -> ServiceRequest:
        """Сотрудник отказывается от заявки, и она возвращается в пул."""
        request = await self.store.get(request_id)
        REQUEST_FSM.assert_can_transition(request.status, RequestStatus.PENDING)
        self._require_owner_or_manager(request, session, "decline")
        reason = _require_text(reason, "причину отказа")

        block = (
            f"--- Отказ от заявки ---\n"
            f"Сотрудник: {session.actor_name}\n"
            f"Причина: {reason}\n"
            f"{self._stamp(self._clock())}"
        )
        patch = {
            "accepted_by": None,
            "accepted_at": None,
            "decline_reason": reason,
            "notes": _append(request.notes, block),
        }
        return await self._transition(
            request,
            RequestStatus.PENDING,
            patch,
            HistoryAction.DECLINED,
            f"Отказ: {reason}",
            session,
        )

    async def cancel(
        self, request_id: str, session: Session, reason: str
    ) -> ServiceRequest:
        request = await self.store.get(request_id)
        REQUEST_FSM.assert_can_transition(request.status, RequestStatus.CANCELLED)
        if request.status == RequestStatus.PENDING:
            if not session.is_manager:
                raise PermissionDeniedError(
                    "Отменить заявку, которую еще никто не принял, может только руководитель."
                )
        else:
            self._require_owner_or_manager(request, session, "cancel")
        reason = _require_text(reason, "причину отмены")

        block = (
            f"--- Заявка отменена ---\n"
            f"Отменил: {session.actor_name}\n"
            f"Причина отмены: {reason}\n"
            f"{self._stamp(self._clock())}"
        )
        patch = {"cancel_reason": reason, "notes": _append(request.notes, block)}
        return await self._transition(
            request,
            RequestStatus.CANCELLED,
            patch,
            HistoryAction.CANCELLED,
            f"Отмена: {reason}",
            session,
        )

    async def complete(
        self, request_id: str, session: Session, work_report: str | None = None
    ) -> ServiceRequest:
        request = await self.store.get(request_id)
        REQUEST_FSM.assert_can_transition(request.status, RequestStatus.COMPLETED)
        self._require_owner_or_manager(request, session, "complete")

        now = self._clock()
        if request.accepted_at and now < request.accepted_at:
            now = request.accepted_at
        report = (work_report or "").strip() or None

        block = f"--- Отчёт о выполнении ---\n{report}\n\n" if report else ""
        block += f"Выполнено: {self._stamp(now)}"
        patch = {
            "completed_at": now,
            "work_report": report,
            "notes": _append(request.notes, block),
        }
        return await self._transition(
            request,
            RequestStatus.COMPLETED,
            patch,
            HistoryAction.COMPLETED,
            report or "Заявка выполнена",
            session,
        )

    async def add_note(self, request_id: str, session: Session, text: str) -> ServiceRequest:
        request = await self.store.get(request_id)
        if not session.is_manager and not self.is_owner(request, session):
            raise PermissionDeniedError(
                "Добавлять заметки может сотрудник, принявший заявку, или руководитель."
            )
        text = _require_text(text, "текст заметки")
        updated = await self.store.update_request(
            request.id,
            {"notes": _append(request.notes, text)},
            expected_status=request.status,
        )
        if updated is None:
            await self._raise_conflict(request, request.status)
        await self.store.append_history(request.id, HistoryAction.NOTE_ADDED, text, session)
        return updated

    async def delete_request(self, request_id: str, session: Session) -> bool:
        if not session.is_manager:
            raise PermissionDeniedError("Удалять заявки может только руководитель.")
        logger.warning(f"Manager {session.user_id} is deleting request {request_id}.")
        return await self.store.delete_request(request_id)

    # --- Чек-лист ---

    async def add_checklist_item(
        self, request_id: str, session: Session, text: str
    ) -> ChecklistItem:
        request = await self._editable(request_id, session)
        text = _require_text(text, "текст пункта")
        existing = await self.store.list_checklist(request.id)
        item = ChecklistItem(
            request_id=request.id,
            item_text=text,
            order_index=max((i.order_index for i in existing), default=0) + 1,
        )
        await self.store.insert_checklist_item(item)
        await self.store.append_history(
            request.id, HistoryAction.CHECKLIST_ADDED, f"Пункт чек-листа: {text}", session
        )
        return item

    async def toggle_checklist_item(self, item_id: str, session: Session) -> ChecklistItem:
        item = await self.store.get_checklist_item(item_id)
        await self._editable(item.request_id, session)
        done = not item.is_completed
        updated = await self.store.update_checklist_item(
            item.id,
            {"is_completed": done, "completed_at": self._clock() if done else None},
        )
        mark = "выполнен" if done else "снята отметка"
        await self.store.append_history(
            item.request_id,
            HistoryAction.CHECKLIST_TOGGLED,
            f"{item.item_text}: {mark}",
            session,
        )
        return updated

    async def delete_checklist_item(self, item_id: str, session: Session) -> None:
        item = await self.store.get_checklist_item(item_id)
        await self._editable(item.request_id, session)
        await self.store.delete_checklist_item(item.id)
        await self.store.append_history(
            item.request_id,
            HistoryAction.CHECKLIST_REMOVED,
            f"Удален пункт: {item.item_text}",
            session,
        )

    # --- Позиции и фото ---

    async def add_line_item(
        self, request_id: str, session: Session, product_id: str, quantity: int = 1
    ) -> RequestLineItem:
        request = await self._editable(request_id, session)
        return await self.store.add_line_item(request.id, product_id, quantity, session)

    async def remove_line_item(self, item_id: str, session: Session) -> RequestLineItem:
        item = await self.store.get_line_item(item_id)
        await self._editable(item.request_id, session)
        return await self.store.remove_line_item(item.id, session)

    async def add_photo(
        self,
        request_id: str,
        session: Session,
        content: bytes,
        filename: str,
        caption: str | None = None,
    ) -> RequestPhoto:
        request = await self._editable(request_id, session)
        return await self.store.add_photo(request.id, content, filename, session, caption)
