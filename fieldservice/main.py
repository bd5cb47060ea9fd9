"""
Основная точка входа в приложение.

Этот файл отвечает за инициализацию сервисов и запуск Telegram-бота.
"""

import logging
from datetime import timedelta

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    filters,
)

from fieldservice.core.config import settings
from fieldservice.core.logging_config import setup_logging
from fieldservice.handlers import admin, common, jobs, reports, tasks
from fieldservice.handlers import request as request_handler
from fieldservice.models.schema import table_schema
from fieldservice.services.catalog_service import ProductCatalog
from fieldservice.services.client_service import ClientDirectory
from fieldservice.services.db_proxy import DbProxy
from fieldservice.services.employee_service import EmployeeDirectory
from fieldservice.services.lifecycle import LifecycleEngine
from fieldservice.services.reporting import ReportService
from fieldservice.services.request_store import RequestStore
from fieldservice.services.sheets_backend import SheetsBackend
from fieldservice.services.task_service import TaskService

logger = logging.getLogger(__name__)

TEXT = filters.TEXT & ~filters.COMMAND


def build_application() -> Application:
    logger.info("Initializing services...")
    backend = SheetsBackend(settings.google_sheet_id, settings.google_drive_folder_id)
    backend.ensure_schema(table_schema())

    employees = EmployeeDirectory(
        backend,
        admin_ids=settings.admin_ids,
        cache_ttl_seconds=settings.employee_cache_ttl_seconds,
    )
    catalog = ProductCatalog(backend)
    store = RequestStore(
        backend,
        employees,
        catalog,
        escalation_age=timedelta(days=settings.escalation_age_days),
    )

    application = Application.builder().token(settings.bot_token).build()

    # Сохраняем экземпляры сервисов в bot_data для доступа из обработчиков
    application.bot_data.update(
        {
            "settings": settings,
            "employees": employees,
            "catalog": catalog,
            "clients": ClientDirectory(backend),
            "store": store,
            "lifecycle": LifecycleEngine(store, tz_name=settings.display_timezone),
            "reports": ReportService(store, employees, tz_name=settings.display_timezone),
            "tasks": TaskService(backend),
            "db_proxy": DbProxy(backend, default_limit=settings.db_proxy_select_limit),
        }
    )

    # --- Диалог создания заявки ---
    application.add_handler(
        ConversationHandler(
            entry_points=[CommandHandler("new", request_handler.new_request_start)],
            states={
                request_handler.NAME: [MessageHandler(TEXT, request_handler.get_name)],
                request_handler.PHONE: [MessageHandler(TEXT, request_handler.get_phone)],
                request_handler.ADDRESS: [
                    MessageHandler(TEXT, request_handler.get_address)
                ],
                request_handler.PROBLEM: [
                    MessageHandler(TEXT, request_handler.get_problem)
                ],
                request_handler.PRIORITY: [
                    MessageHandler(TEXT, request_handler.get_priority)
                ],
            },
            fallbacks=[CommandHandler("cancel", request_handler.cancel)],
        )
    )
    # --- Диалог загрузки фото ---
    application.add_handler(
        ConversationHandler(
            entry_points=[CommandHandler("photo", request_handler.photo_start)],
            states={
                request_handler.PHOTO: [
                    MessageHandler(filters.PHOTO, request_handler.get_photo)
                ],
            },
            fallbacks=[CommandHandler("cancel", request_handler.cancel)],
        )
    )

    commands = {
        "start": common.start,
        "help": common.start,
        "myid": common.show_my_id,
        "requests": request_handler.list_requests,
        "my": request_handler.my_requests,
        "request": request_handler.show_request,
        "decline": request_handler.decline_request,
        "cancelreq": request_handler.cancel_request,
        "complete": request_handler.complete_request,
        "note": request_handler.add_note,
        "delreq": request_handler.delete_request,
        "additem": request_handler.add_item,
        "delitem": request_handler.remove_item,
        "check": request_handler.add_checklist_item,
        "toggle": request_handler.toggle_checklist_item,
        "delcheck": request_handler.delete_checklist_item,
        "tasks": tasks.list_tasks,
        "newtask": tasks.new_task,
        "assigntask": tasks.assign_task,
        "starttask": tasks.start_task,
        "donetask": tasks.complete_task,
        "canceltask": tasks.cancel_task,
        "report": reports.report_command,
        "employees": admin.list_employees,
        "addemployee": admin.add_employee,
        "delemployee": admin.deactivate_employee,
        "products": admin.list_products,
        "addproduct": admin.add_product,
        "clients": admin.list_clients,
        "addclient": admin.add_client,
        "db": admin.db_command,
        "escalate": admin.escalate_now,
    }
    for name, callback in commands.items():
        application.add_handler(CommandHandler(name, callback))

    application.add_handler(
        CallbackQueryHandler(request_handler.request_callback_handler, pattern=r"^accept_req:")
    )
    application.add_handler(
        CallbackQueryHandler(admin.employee_callback, pattern=r"^deactivate_emp:")
    )

    # --- Регистрируем обработчик ошибок ---
    application.add_error_handler(common.error_handler)
    application.add_handler(MessageHandler(TEXT, common.unauthorized_user_handler))

    application.job_queue.run_repeating(
        jobs.escalate_stale_requests_job,
        interval=timedelta(minutes=settings.escalation_interval_minutes),
        first=timedelta(seconds=30),
        name="escalate_stale_requests",
    )
    return application


def main() -> None:
    """Основная функция для запуска бота."""
    setup_logging()
    application = build_application()
    logger.info("Bot is running in polling mode.")
    application.run_polling()


if __name__ == "__main__":
    main()
