"""
Тесты отчетов по заявкам.
"""

import csv
import io
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from fieldservice.models.product import ProductCategory
from fieldservice.models.request import (
    Priority,
    RequestLineItem,
    RequestStatus,
    ServiceRequest,
)
from fieldservice.services.reporting import (
    ReportService,
    build_report,
    employee_breakdown,
    export_csv,
    period_trend,
    previous_period,
    requests_in_range,
    sum_by_category,
)

from tests.fakes import ENGINEER, MASTER


def make_request(request_id, created, status=RequestStatus.PENDING, **kwargs):
    return ServiceRequest(
        id=request_id,
        name="Клиент",
        phone="12345",
        address="Дом",
        status=status,
        created_at=created,
        **kwargs,
    )


def make_item(request_id, price, quantity=1, category=ProductCategory.SERVICE):
    return RequestLineItem(
        request_id=request_id,
        product_id="p",
        quantity=quantity,
        price=Decimal(price),
        category=category,
    )


def test_sum_by_category():
    """Тест: Услуга 100 × 2 и товар 50 × 1 дают 200 / 50 / 250."""
    items = [
        make_item("r1", "100", 2),
        make_item("r1", "50", 1, ProductCategory.PRODUCT),
    ]
    sums = sum_by_category(items)
    assert sums.service_sum == Decimal("200")
    assert sums.product_sum == Decimal("50")
    assert sums.total == Decimal("250")


def test_sum_by_category_product_alias():
    """Тест: Товар 100 × 2 и услуга 50 × 1 дают услуги 50, товары 200, итого 250."""
    items = [
        make_item("r1", "100", 2, ProductCategory.parse("товар")),
        make_item("r1", "50", 1, ProductCategory.parse("услуга")),
    ]
    sums = sum_by_category(items)
    assert (sums.service_sum, sums.product_sum, sums.total) == (
        Decimal("50"),
        Decimal("200"),
        Decimal("250"),
    )


def test_sum_by_category_empty():
    assert sum_by_category([]).total == Decimal("0")


@pytest.mark.parametrize(
    "current, previous, direction, label",
    [
        (10, 0, "neutral", "—"),
        (0, 0, "neutral", "—"),
        (15, 10, "up", "+50%"),
        (5, 10, "down", "-50%"),
        (10, 10, "flat", "0%"),
        # Направление по точной разнице, даже если подпись округлилась до нуля
        (1004, 1000, "up", "+0%"),
        (996, 1000, "down", "-0%"),
        # Половина округляется от нуля
        (1005, 1000, "up", "+1%"),
        (1025, 1000, "up", "+3%"),
    ],
)
def test_period_trend(current, previous, direction, label):
    trend = period_trend(current, previous)
    assert trend.direction == direction
    assert trend.label == label


def test_previous_period_has_same_length():
    assert previous_period(date(2024, 5, 1), date(2024, 5, 31)) == (
        date(2024, 3, 31),
        date(2024, 4, 30),
    )
    assert previous_period(date(2024, 5, 10), date(2024, 5, 10)) == (
        date(2024, 5, 9),
        date(2024, 5, 9),
    )


def test_requests_in_range_uses_local_date():
    """Тест: 22:30 UTC 31 мая это уже 1 июня по Москве."""
    late = make_request("r1", datetime(2024, 5, 31, 22, 30, tzinfo=timezone.utc))
    assert requests_in_range([late], date(2024, 6, 1), date(2024, 6, 30), "Europe/Moscow")
    assert not requests_in_range([late], date(2024, 6, 1), date(2024, 6, 30), "UTC")


def test_employee_breakdown():
    may = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)
    requests = [
        make_request("r1", may, RequestStatus.COMPLETED, accepted_by=MASTER.id),
        make_request("r2", may, RequestStatus.CANCELLED, accepted_by=MASTER.id),
        make_request("r3", may, RequestStatus.IN_PROGRESS, accepted_by=ENGINEER.id),
        # Не принята, но назначена: относится к назначенному
        make_request("r4", may, RequestStatus.PENDING, assigned_to=ENGINEER.id),
        make_request("r5", may, RequestStatus.COMPLETED, accepted_by="gone"),
        make_request("r6", may),
    ]
    items = [
        make_item("r1", "100", 2),
        make_item("r1", "50", 1, ProductCategory.PRODUCT),
        # Позиции невыполненной заявки не входят в выручку
        make_item("r3", "1000"),
        make_item("r5", "10"),
    ]

    stats = employee_breakdown(
        requests, items, [MASTER, ENGINEER], date(2024, 5, 1), date(2024, 5, 31)
    )

    by_id = {s.employee_id: s for s in stats}
    assert set(by_id) == {MASTER.id, ENGINEER.id, "gone"}
    master = by_id[MASTER.id]
    assert (master.total, master.completed, master.cancelled) == (2, 1, 1)
    assert master.service_sum == Decimal("200")
    assert master.product_sum == Decimal("50")
    assert master.revenue == Decimal("250")
    assert master.completion_rate == 50
    engineer = by_id[ENGINEER.id]
    assert (engineer.total, engineer.in_progress, engineer.revenue) == (2, 1, Decimal("0"))
    assert by_id["gone"].name == "Неизвестный сотрудник"
    # Сортировка по выручке
    assert stats[0].employee_id == MASTER.id


def test_build_report_with_trends():
    current = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)
    previous = datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc)
    requests = [
        make_request("r1", current, RequestStatus.COMPLETED, accepted_by=MASTER.id,
                     priority=Priority.HIGH),
        make_request("r2", current, RequestStatus.COMPLETED, accepted_by=MASTER.id),
        make_request("r3", current, RequestStatus.PENDING),
        make_request("r4", previous, RequestStatus.COMPLETED, accepted_by=MASTER.id),
    ]
    items = [make_item("r1", "100"), make_item("r4", "999")]

    summary = build_report(
        requests, items, [MASTER], date(2024, 5, 1), date(2024, 5, 31), "Europe/Moscow"
    )

    assert (summary.total, summary.completed, summary.pending) == (3, 2, 1)
    assert summary.completion_rate == 67
    assert summary.priority_stats["high"] == 1
    assert summary.priority_stats["medium"] == 2
    assert summary.revenue.total == Decimal("100")
    assert summary.total_trend.label == "+200%"
    assert summary.completed_trend.label == "+100%"


def test_build_report_for_single_employee_and_swapped_dates():
    may = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)
    requests = [
        make_request("r1", may, RequestStatus.COMPLETED, accepted_by=MASTER.id),
        make_request("r2", may, RequestStatus.COMPLETED, accepted_by=ENGINEER.id),
    ]
    summary = build_report(
        requests, [], [MASTER, ENGINEER], date(2024, 5, 31), date(2024, 5, 1),
        employee_id=ENGINEER.id,
    )
    assert summary.date_from == date(2024, 5, 1)
    assert summary.total == 1
    assert [s.employee_id for s in summary.employee_stats] == [ENGINEER.id]
    assert summary.total_trend.direction == "neutral"


def test_export_csv_has_bom_and_rows():
    may = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)
    summary = build_report(
        [make_request("r1", may, RequestStatus.COMPLETED, accepted_by=MASTER.id)],
        [make_item("r1", "100", 2)],
        [MASTER],
        date(2024, 5, 1),
        date(2024, 5, 31),
    )

    content = export_csv(summary)

    assert content.startswith(b"\xef\xbb\xbf")
    rows = list(csv.reader(io.StringIO(content.decode("utf-8-sig"))))
    assert rows[0] == ["Отчет по заявкам", "2024-05-01 - 2024-05-31"]
    assert ["Выручка: всего", "200"] in rows
    assert rows[-1][0] == MASTER.full_name
    assert rows[-1][-1] == "200"


@pytest.mark.asyncio
async def test_report_service_reads_store(store, new_request, employees):
    service = ReportService(store, employees, tz_name="Europe/Moscow")
    summary = await service.build(date(2024, 5, 1), date(2024, 5, 31))
    assert summary.total == 1
    assert summary.pending == 1
