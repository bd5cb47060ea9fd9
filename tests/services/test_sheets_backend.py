"""
Тесты SheetsBackend с подмененным клиентом gspread.
"""

import threading

import pytest

from fieldservice.core.exceptions import BackendError
from fieldservice.models.request import RequestStatus
from fieldservice.services.backend import OrderBy
from fieldservice.services.sheets_backend import SheetsBackend

HEADERS = ["id", "status", "accepted_by", "created_at"]
RECORDS = [
    {"id": "r1", "status": "pending", "accepted_by": "", "created_at": "2024-05-02"},
    {"id": "r2", "status": "in_progress", "accepted_by": "e1", "created_at": "2024-05-01"},
]


@pytest.fixture
def worksheet(mocker):
    ws = mocker.MagicMock()
    ws.row_values.return_value = list(HEADERS)
    ws.get_all_records.return_value = [dict(r) for r in RECORDS]
    return ws


@pytest.fixture
def sheets(mocker, worksheet) -> SheetsBackend:
    """Фикстура для создания SheetsBackend без обращения к Google API."""
    credentials = mocker.patch("fieldservice.services.sheets_backend.CREDENTIALS_FILE")
    credentials.exists.return_value = True
    client = mocker.patch("gspread.service_account").return_value
    client.open_by_key.return_value.worksheet.return_value = worksheet
    return SheetsBackend("sheet-id", "folder-id")


@pytest.mark.asyncio
async def test_select_filters_and_orders(sheets, worksheet):
    rows = await sheets.select("requests", order=OrderBy("created_at"))
    assert [r["id"] for r in rows] == ["r2", "r1"]

    rows = await sheets.select("requests", {"status": RequestStatus.PENDING})
    assert [r["id"] for r in rows] == ["r1"]
    worksheet.get_all_records.assert_called_with(numericise_ignore=["all"])


@pytest.mark.asyncio
async def test_insert_follows_header_order(sheets, worksheet, mocker):
    on_change = mocker.MagicMock()
    sheets.subscribe("requests", on_change)

    await sheets.insert(
        "requests", {"created_at": "2024-05-03", "id": "r3", "status": "pending"}
    )

    worksheet.append_row.assert_called_once_with(
        ["r3", "pending", "", "2024-05-03"], value_input_option="RAW"
    )
    on_change.assert_called_once_with("requests")


@pytest.mark.asyncio
async def test_conditional_update(sheets, worksheet):
    """Тест: Обновляется только строка с ожидаемым статусом."""
    updated = await sheets.update(
        "requests",
        {"status": RequestStatus.IN_PROGRESS, "accepted_by": "e2"},
        {"id": "r1", "status": RequestStatus.PENDING},
    )

    assert updated == [
        {"id": "r1", "status": "in_progress", "accepted_by": "e2", "created_at": "2024-05-02"}
    ]
    worksheet.update.assert_called_once_with(
        range_name="A2",
        values=[["r1", "in_progress", "e2", "2024-05-02"]],
        value_input_option="RAW",
    )


@pytest.mark.asyncio
async def test_conditional_update_mismatch_writes_nothing(sheets, worksheet, mocker):
    on_change = mocker.MagicMock()
    sheets.subscribe("requests", on_change)

    updated = await sheets.update(
        "requests", {"status": "completed"}, {"id": "r1", "status": "in_progress"}
    )

    assert updated == []
    worksheet.update.assert_not_called()
    on_change.assert_not_called()


@pytest.mark.asyncio
async def test_delete_removes_rows_bottom_up(sheets, worksheet):
    deleted = await sheets.delete("requests", {})
    assert len(deleted) == 2
    assert [c.args for c in worksheet.delete_rows.call_args_list] == [(3,), (2,)]


@pytest.mark.asyncio
async def test_unexpected_error_becomes_backend_error(sheets, worksheet):
    worksheet.get_all_records.side_effect = ValueError("broken sheet")
    with pytest.raises(BackendError):
        await sheets.select("requests")


def test_ensure_schema_creates_missing_parts(sheets, mocker):
    spreadsheet = sheets.client.open_by_key.return_value
    existing = mocker.MagicMock()
    existing.title = "requests"
    existing.row_values.return_value = ["id"]
    existing.col_count = 1
    spreadsheet.worksheets.return_value = [existing]
    created = spreadsheet.add_worksheet.return_value
    created.row_values.return_value = []
    created.col_count = 3

    sheets.ensure_schema({"requests": ["id", "status"], "clients": ["id", "name"]})

    existing.add_cols.assert_called_once_with(1)
    existing.update.assert_called_once_with(range_name="A1", values=[["id", "status"]])
    spreadsheet.add_worksheet.assert_called_once_with(title="clients", rows=1000, cols=2)
    created.update.assert_called_once_with(range_name="A1", values=[["id", "name"]])
    assert sheets.tables() == ["requests", "clients"]


@pytest.mark.asyncio
async def test_sheet_calls_run_outside_event_loop_thread(sheets, worksheet):
    """
    Тест: Блокирующие вызовы gspread выполняются не в потоке цикла событий.
    """
    # Arrange
    loop_thread = threading.get_ident()
    seen_threads = []

    def records(**kwargs):
        seen_threads.append(threading.get_ident())
        return [dict(r) for r in RECORDS]

    worksheet.get_all_records.side_effect = records

    # Act
    await sheets.select("requests")
    await sheets.update("requests", {"accepted_by": "e3"}, {"id": "r2"})

    # Assert
    assert len(seen_threads) == 2
    assert loop_thread not in seen_threads
