"""
Исключения предметной области.

Сервисы выбрасывают их, обработчики бота перехватывают и показывают
пользователю текст сообщения.
"""


class FieldServiceError(Exception):
    """Базовая ошибка FSM. Текст сообщения предназначен для пользователя."""


class NotFoundError(FieldServiceError):
    def __init__(self, entity: str, ref: str):
        self.entity = entity
        self.ref = ref
        super().__init__(f"{entity} «{ref}» не найден(а).")


class InvalidInputError(FieldServiceError):
    """Ошибка валидации входных данных до отправки в хранилище."""


class PermissionDeniedError(FieldServiceError):
    pass


class InvalidTransitionError(FieldServiceError):
    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Недопустимый переход статуса: {current} -> {target}."
        )


class AlreadyAcceptedError(InvalidTransitionError):
    """Заявку уже принял другой сотрудник (проиграна гонка за принятие)."""

    def __init__(self, current: str, accepted_by: str | None = None):
        self.accepted_by = accepted_by
        super().__init__(
            current,
            "in_progress",
            "Эту заявку уже взял в работу другой сотрудник.",
        )


class BackendError(FieldServiceError):
    """Сбой хранилища (сеть, авторизация, квоты Google API)."""
