"""
Декораторы для проверки авторизации и прав доступа.
"""

import logging
from functools import wraps
from typing import Any, Callable, Coroutine

from telegram import Update
from telegram.ext import ContextTypes

from fieldservice.models.employee import Role
from fieldservice.services.employee_service import EmployeeDirectory

logger = logging.getLogger(__name__)


def require_role(*roles: Role | str) -> Callable:
    """
    Декоратор для проверки, что пользователь имеет одну из указанных ролей.

    Контекст пользователя (Session) сохраняется в context.user_data["session"].

    Args:
        *roles: Роли, которым разрешен доступ.

    Returns:
        Декоратор, который можно применить к обработчику python-telegram-bot.
    """
    allowed = {Role(role) for role in roles}

    def decorator(
        func: Callable[[Update, ContextTypes.DEFAULT_TYPE], Coroutine[Any, Any, Any]],
    ):
        @wraps(func)
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
            user = update.effective_user
            if not user:
                return None  # Не должно происходить в обычных чатах

            directory: EmployeeDirectory = context.application.bot_data["employees"]
            session = await directory.session_for(
                user.id, user.first_name or user.username or str(user.id)
            )

            if session and session.roles & allowed:
                context.user_data["session"] = session
                return await func(update, context)

            role_str = (
                ",".join(sorted(r.value for r in session.roles))
                if session
                else "Unauthorized"
            )
            logger.warning(
                f"Unauthorized access attempt by user {user.id} ({user.username}). "
                f"User roles: '{role_str}'. Required roles: {sorted(r.value for r in allowed)}"
            )
            if update.callback_query:
                await update.callback_query.answer(
                    "⛔️ У вас нет доступа для этого действия.", show_alert=True
                )
            elif update.effective_message:
                await update.effective_message.reply_text(
                    "⛔️ У вас нет доступа для выполнения этой команды."
                )
            return None

        return wrapper

    return decorator


MANAGERS = (Role.ADMIN, Role.DIRECTOR, Role.DISPATCHER)
FSM_STAFF = MANAGERS + (Role.MASTER, Role.ENGINEER)
