"""
Прямой доступ к таблицам хранилища для администраторов.

Команда описывается JSON-объектом
`{"action", "table", "data", "where", "columns", "limit", "order"}`
и выполняется через тот же DataBackend, что и остальные сервисы.
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from fieldservice.core.exceptions import FieldServiceError
from fieldservice.services.backend import DataBackend, OrderBy

logger = logging.getLogger(__name__)


class DbOrder(BaseModel):
    column: str
    ascending: bool = True


class DbCommand(BaseModel):
    action: Literal["select", "insert", "update", "delete", "tables"]
    table: str | None = None
    data: dict[str, Any] | None = None
    where: dict[str, Any] | None = None
    columns: str | None = None
    limit: int | None = Field(default=None, gt=0)
    order: DbOrder | None = None


class DbResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None


class DbProxy:
    def __init__(self, backend: DataBackend, default_limit: int | None = None):
        self.backend = backend
        self.default_limit = default_limit

    @staticmethod
    def parse(payload: str | dict) -> DbCommand:
        if isinstance(payload, str):
            return DbCommand.model_validate_json(payload)
        return DbCommand.model_validate(payload)

    def _check_table(self, command: DbCommand) -> str | None:
        if not command.table:
            return "Table name is required"
        if command.table not in self.backend.tables():
            return f"Unknown table '{command.table}'"
        return None

    @staticmethod
    def _project(rows: list[dict], columns: str | None) -> list[dict]:
        if not columns or columns.strip() == "*":
            return rows
        wanted = [c.strip() for c in columns.split(",") if c.strip()]
        return [{c: row.get(c) for c in wanted} for row in rows]

    async def execute(self, command: DbCommand | str | dict) -> DbResult:
        try:
            if not isinstance(command, DbCommand):
                command = self.parse(command)
        except ValidationError as e:
            return DbResult(success=False, error=f"Invalid command: {e.errors()[0]['msg']}")

        if command.action == "tables":
            return DbResult(success=True, data=self.backend.tables())

        error = self._check_table(command)
        if error:
            return DbResult(success=False, error=error)

        logger.info(f"DB proxy: {command.action} on '{command.table}'.")
        try:
            if command.action == "select":
                order = (
                    OrderBy(command.order.column, command.order.ascending)
                    if command.order
                    else None
                )
                rows = await self.backend.select(
                    command.table,
                    command.where,
                    order=order,
                    limit=command.limit or self.default_limit,
                )
                return DbResult(success=True, data=self._project(rows, command.columns))

            if command.action == "insert":
                if not command.data:
                    return DbResult(success=False, error="Table and data are required")
                row = await self.backend.insert(command.table, command.data)
                return DbResult(success=True, data=[row])

            if command.action == "update":
                if not command.data or not command.where:
                    return DbResult(
                        success=False,
                        error="Table, data, and where condition are required",
                    )
                rows = await self.backend.update(command.table, command.data, command.where)
                return DbResult(success=True, data=rows)

            if not command.where:
                return DbResult(success=False, error="Table and where condition are required")
            rows = await self.backend.delete(command.table, command.where)
            return DbResult(success=True, data=rows)
        except FieldServiceError as e:
            logger.error(f"DB proxy {command.action} on '{command.table}' failed: {e}")
            return DbResult(success=False, error=str(e))
