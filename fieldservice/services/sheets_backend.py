"""
Хранилище FSM поверх Google Sheets и Google Drive.

Каждая таблица хранится как отдельный лист Google-таблицы, первая строка листа содержит
имена колонок. Фото заявок загружаются в папку Google Drive.

Реализует механизм повторных попыток (retry) для повышения отказоустойчивости
и механизм блокировки (asyncio.Lock), благодаря которому обновление с фильтром
по статусу выполняется как условная запись (compare-and-set) в пределах процесса.
"""

import asyncio
import io
import logging
from functools import wraps
from pathlib import Path

import gspread
import requests.exceptions
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload
from gspread.exceptions import APIError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fieldservice.core.exceptions import BackendError
from fieldservice.services.backend import (
    ChangeNotifier,
    OrderBy,
    matches,
    sort_rows,
    to_cell_value,
)

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = Path(__file__).parent.parent.parent / "credentials.json"

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


def is_retryable_gspread_error(exception: BaseException) -> bool:
    return isinstance(exception, APIError) and exception.response.status_code >= 500


google_api_retry = retry(
    retry=(
        retry_if_exception_type(requests.exceptions.RequestException)
        | retry_if_exception(is_retryable_gspread_error)
    ),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def backend_errors(func):
    """Превращает любую ошибку Google API (после всех повторов) в BackendError."""

    @wraps(func)
    async def wrapper(self, table, *args, **kwargs):
        try:
            return await func(self, table, *args, **kwargs)
        except BackendError:
            raise
        except Exception as e:
            logger.error(
                f"Backend operation '{func.__name__}' on '{table}' failed: {e}",
                exc_info=True,
            )
            raise BackendError(
                f"Ошибка хранилища при обращении к «{table}». Попробуйте позже."
            ) from e

    return wrapper


class SheetsBackend(ChangeNotifier):
    """
    Класс для работы с таблицами FSM в Google Sheets и фото в Google Drive.
    """

    def __init__(self, sheet_id: str, drive_folder_id: str) -> None:
        super().__init__()
        logger.info("Initializing Google API client...")
        if not CREDENTIALS_FILE.exists():
            logger.error(f"Credentials file not found at: {CREDENTIALS_FILE}")
            raise FileNotFoundError(
                f"Google credentials file not found at {CREDENTIALS_FILE}"
            )

        self.sheet_id = sheet_id
        self.drive_folder_id = drive_folder_id
        self.client = gspread.service_account(
            filename=str(CREDENTIALS_FILE), scopes=SCOPES
        )
        self.lock = asyncio.Lock()
        self._known_tables: list[str] = []
        logger.info("Google API client initialized successfully.")

    def _spreadsheet(self) -> gspread.Spreadsheet:
        try:
            return self.client.open_by_key(self.sheet_id)
        except gspread.exceptions.SpreadsheetNotFound:
            logger.error(f"Spreadsheet with ID '{self.sheet_id}' not found.")
            raise

    def _worksheet(self, table: str) -> gspread.Worksheet:
        try:
            return self._spreadsheet().worksheet(table)
        except gspread.exceptions.WorksheetNotFound:
            logger.error(f"Worksheet '{table}' not found in the spreadsheet.")
            raise

    @staticmethod
    def _records(worksheet: gspread.Worksheet) -> list[dict]:
        # Все значения читаем строками: телефоны и ID не должны превращаться в числа
        return worksheet.get_all_records(numericise_ignore=["all"])

    @google_api_retry
    def ensure_schema(self, schema: dict[str, list[str]]) -> None:
        """Создает недостающие листы и заголовки колонок."""
        spreadsheet = self._spreadsheet()
        existing = {ws.title: ws for ws in spreadsheet.worksheets()}
        for table, columns in schema.items():
            worksheet = existing.get(table)
            if worksheet is None:
                logger.info(f"Creating worksheet '{table}' with {len(columns)} columns.")
                worksheet = spreadsheet.add_worksheet(
                    title=table, rows=1000, cols=len(columns)
                )
            headers = worksheet.row_values(1)
            missing = [column for column in columns if column not in headers]
            if missing:
                new_headers = headers + missing
                if worksheet.col_count < len(new_headers):
                    worksheet.add_cols(len(new_headers) - worksheet.col_count)
                worksheet.update(range_name="A1", values=[new_headers])
                logger.info(f"Worksheet '{table}': added columns {missing}.")
        self._known_tables = list(schema)

    def tables(self) -> list[str]:
        return list(self._known_tables)

    # gspread и клиент Drive блокирующие: их вызовы уходят в отдельный поток,
    # чтобы не останавливать цикл событий бота.

    def _select_rows(self, table: str, filters: dict | None) -> list[dict]:
        worksheet = self._worksheet(table)
        return [row for row in self._records(worksheet) if matches(row, filters)]

    def _append_row(self, table: str, row: dict) -> None:
        worksheet = self._worksheet(table)
        headers = worksheet.row_values(1)
        worksheet.append_row(
            [to_cell_value(row.get(header)) for header in headers],
            value_input_option="RAW",
        )

    def _update_rows(self, table: str, patch: dict, filters: dict) -> list[dict]:
        updated: list[dict] = []
        worksheet = self._worksheet(table)
        headers = worksheet.row_values(1)
        for index, record in enumerate(self._records(worksheet)):
            if not matches(record, filters):
                continue
            new_record = {**record, **{k: to_cell_value(v) for k, v in patch.items()}}
            # +2: строка заголовков и нумерация строк с единицы
            worksheet.update(
                range_name=f"A{index + 2}",
                values=[[to_cell_value(new_record.get(h)) for h in headers]],
                value_input_option="RAW",
            )
            updated.append(new_record)
        return updated

    def _delete_rows(self, table: str, filters: dict) -> list[dict]:
        deleted: list[dict] = []
        worksheet = self._worksheet(table)
        positions = []
        for index, record in enumerate(self._records(worksheet)):
            if matches(record, filters):
                positions.append(index + 2)
                deleted.append(record)
        # Удаляем снизу вверх, чтобы номера строк не сдвигались
        for position in reversed(positions):
            worksheet.delete_rows(position)
        return deleted

    def _upload_to_drive(self, path: str, content: bytes, mimetype: str) -> str:
        creds = Credentials.from_service_account_file(CREDENTIALS_FILE, scopes=SCOPES)
        drive_service = build("drive", "v3", credentials=creds)

        file_metadata = {
            "name": path.replace("/", "_"),
            "parents": [self.drive_folder_id],
        }
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mimetype, resumable=True)
        file = (
            drive_service.files()
            .create(body=file_metadata, media_body=media, fields="id,webViewLink")
            .execute()
        )

        file_id = file.get("id")
        drive_service.permissions().create(
            fileId=file_id, body={"type": "anyone", "role": "reader"}
        ).execute()

        logger.info(f"File uploaded successfully. Drive file ID: {file_id}")
        return file.get("webViewLink")

    @backend_errors
    @google_api_retry
    async def select(
        self,
        table: str,
        filters: dict | None = None,
        order: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        rows = await asyncio.to_thread(self._select_rows, table, filters)
        rows = sort_rows(rows, order)
        logger.debug(f"Selected {len(rows)} rows from '{table}' (filters={filters}).")
        return rows[:limit] if limit else rows

    @backend_errors
    @google_api_retry
    async def insert(self, table: str, row: dict) -> dict:
        logger.info(f"Inserting row {row.get('id')} into '{table}'.")
        async with self.lock:
            await asyncio.to_thread(self._append_row, table, row)
        self.notify(table)
        return row

    @backend_errors
    @google_api_retry
    async def update(self, table: str, patch: dict, filters: dict) -> list[dict]:
        """
        Обновляет все строки, подходящие под фильтр, и возвращает их новые значения.

        Чтение и запись выполняются под одной блокировкой, поэтому фильтр по
        текущему статусу работает как условное обновление.
        """
        async with self.lock:
            updated = await asyncio.to_thread(self._update_rows, table, patch, filters)
        if updated:
            logger.info(f"Updated {len(updated)} rows in '{table}' (filters={filters}).")
            self.notify(table)
        else:
            logger.info(f"No rows in '{table}' matched update filters {filters}.")
        return updated

    @backend_errors
    @google_api_retry
    async def delete(self, table: str, filters: dict) -> list[dict]:
        async with self.lock:
            deleted = await asyncio.to_thread(self._delete_rows, table, filters)
        if deleted:
            logger.info(f"Deleted {len(deleted)} rows from '{table}' (filters={filters}).")
            self.notify(table)
        return deleted

    @backend_errors
    @google_api_retry
    async def upload_file(
        self, path: str, content: bytes, mimetype: str = "image/jpeg"
    ) -> str:
        """Загружает файл в Google Drive и возвращает публичную ссылку."""
        logger.info(f"Uploading file '{path}' ({len(content)} bytes) to Google Drive.")
        return await asyncio.to_thread(self._upload_to_drive, path, content, mimetype)
