"""
Модуль конфигурации проекта.

Загружает настройки из переменных окружения с помощью Pydantic Settings.
Обеспечивает централизованный и безопасный доступ к конфигурационным данным.
"""

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Основные настройки приложения.

    Атрибуты:
        bot_token (str): Секретный токен для доступа к Telegram Bot API.
        admin_ids_str (str): Список Telegram ID администраторов в виде строки.
        admin_ids (list[int]): Сгенерированный список ID администраторов.
        tech_chat_id (int): Чат, куда отправляются уведомления о заявках.
        google_sheet_id (str): ID Google-таблицы, в которой хранятся все таблицы FSM.
        google_drive_folder_id (str): ID папки на Google Drive для хранения фото.
        escalation_age_days (int): Возраст заявки, после которого приоритет становится срочным.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # --- Telegram Bot Settings ---
    bot_token: str = Field(..., description="Telegram Bot API Token")
    admin_ids_str: str = Field(
        ...,
        alias="ADMIN_IDS",
        description="List of admin Telegram IDs, comma-separated",
    )
    tech_chat_id: int = Field(
        ..., description="Telegram Chat ID for service request notifications"
    )

    @computed_field
    @property
    def admin_ids(self) -> list[int]:
        """Преобразует строку admin_ids_str в список целых чисел."""
        if not self.admin_ids_str:
            return []
        return [int(item.strip()) for item in self.admin_ids_str.split(",")]

    # --- Google API Settings ---
    google_sheet_id: str = Field(..., description="Google Sheet ID for FSM tables")
    google_drive_folder_id: str = Field(
        ..., description="Google Drive Folder ID for request photos"
    )

    # --- Business Logic Settings ---
    display_timezone: str = Field(
        default="Europe/Moscow",
        description="Timezone for displaying dates and times to users",
    )
    escalation_age_days: int = Field(
        default=2,
        ge=1,
        description="Open requests older than this are escalated to urgent",
    )
    escalation_interval_minutes: int = Field(
        default=30,
        ge=1,
        description="How often the escalation job runs",
    )
    employee_cache_ttl_seconds: int = Field(
        default=60, description="TTL of the employee directory cache"
    )
    db_proxy_select_limit: int = Field(
        default=10, description="Default row limit for /db select commands"
    )


# Создаем единственный экземпляр настроек, который будет использоваться во всем приложении
settings = Settings()
