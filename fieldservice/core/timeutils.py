"""
Работа со временем: хранение в UTC, отображение в часовом поясе из настроек.
"""

from datetime import datetime, timezone

import pytz


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(dt: datetime | None, tz_name: str = "Europe/Moscow") -> str:
    """
    Форматирует datetime объект в строку с учетом указанного часового пояса.
    """
    if not dt:
        return "не указано"

    # Убеждаемся, что время в UTC, если оно "наивное"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.utc)

    local_dt = dt.astimezone(pytz.timezone(tz_name))
    return local_dt.strftime("%d.%m.%Y %H:%M")
