"""
Отчеты по заявкам.

Все расчеты выполняются над уже загруженными строками и ничего не пишут
в хранилище. ReportService только загружает данные и вызывает эти функции.
"""

import csv
import io
import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

import pytz

from fieldservice.models.employee import Employee
from fieldservice.models.product import ProductCategory
from fieldservice.models.report import CategorySums, EmployeeStat, ReportSummary, Trend
from fieldservice.models.request import (
    Priority,
    RequestLineItem,
    RequestStatus,
    ServiceRequest,
)
from fieldservice.services.employee_service import EmployeeDirectory
from fieldservice.services.request_store import RequestStore

logger = logging.getLogger(__name__)

UNKNOWN_EMPLOYEE = "Неизвестный сотрудник"


def sum_by_category(items: Iterable[RequestLineItem]) -> CategorySums:
    """Делит сумму позиций на услуги и товары."""
    service_sum = Decimal("0")
    product_sum = Decimal("0")
    for item in items:
        if item.category == ProductCategory.PRODUCT:
            product_sum += item.total
        else:
            service_sum += item.total
    return CategorySums(
        service_sum=service_sum, product_sum=product_sum, total=service_sum + product_sum
    )


def _local_date(request: ServiceRequest, tz_name: str) -> date:
    return request.created_at.astimezone(pytz.timezone(tz_name)).date()


def requests_in_range(
    requests: Iterable[ServiceRequest],
    date_from: date,
    date_to: date,
    tz_name: str = "UTC",
) -> list[ServiceRequest]:
    """Заявки, созданные в указанные дни (границы включительно)."""
    return [r for r in requests if date_from <= _local_date(r, tz_name) <= date_to]


def _owner(request: ServiceRequest) -> str | None:
    return request.accepted_by or request.assigned_to


def employee_breakdown(
    requests: Iterable[ServiceRequest],
    items: Iterable[RequestLineItem],
    employees: Iterable[Employee],
    date_from: date,
    date_to: date,
    tz_name: str = "UTC",
) -> list[EmployeeStat]:
    """
    Статистика по сотрудникам за период.

    Заявка относится к принявшему ее сотруднику, а если такого нет, то к
    назначенному. Выручка считается только по выполненным заявкам.
    Результат отсортирован по выручке, по убыванию.
    """
    items_by_request: dict[str, list[RequestLineItem]] = defaultdict(list)
    for item in items:
        items_by_request[item.request_id].append(item)
    names = {employee.id: employee.full_name for employee in employees}

    stats: dict[str, EmployeeStat] = {}
    for request in requests_in_range(requests, date_from, date_to, tz_name):
        employee_id = _owner(request)
        if not employee_id:
            continue
        stat = stats.get(employee_id)
        if stat is None:
            stat = EmployeeStat(
                employee_id=employee_id, name=names.get(employee_id, UNKNOWN_EMPLOYEE)
            )
            stats[employee_id] = stat

        stat.total += 1
        if request.status == RequestStatus.COMPLETED:
            stat.completed += 1
            sums = sum_by_category(items_by_request[request.id])
            stat.service_sum += sums.service_sum
            stat.product_sum += sums.product_sum
            stat.revenue += sums.total
        elif request.status == RequestStatus.CANCELLED:
            stat.cancelled += 1
        elif request.status == RequestStatus.IN_PROGRESS:
            stat.in_progress += 1

    return sorted(stats.values(), key=lambda s: s.revenue, reverse=True)


def period_trend(current: int, previous: int) -> Trend:
    """
    Изменение в процентах. Без данных за прошлый период тренд нейтральный.

    Направление определяется по точной разнице, а округление до целого
    нужно только для подписи: рост на 0.4% показывается как "+0%".
    """
    if previous == 0:
        return Trend(direction="neutral", percent=None, label="—")
    diff = Decimal(current - previous) * 100 / Decimal(previous)
    rounded = diff.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    if diff > 0:
        return Trend(direction="up", percent=int(rounded), label=f"+{rounded}%")
    if diff < 0:
        return Trend(direction="down", percent=int(rounded), label=f"{rounded}%")
    return Trend(direction="flat", percent=0, label="0%")


def previous_period(date_from: date, date_to: date) -> tuple[date, date]:
    """Период той же длины, заканчивающийся накануне date_from."""
    prev_to = date_from - timedelta(days=1)
    return prev_to - (date_to - date_from), prev_to


def build_report(
    requests: list[ServiceRequest],
    items: list[RequestLineItem],
    employees: list[Employee],
    date_from: date,
    date_to: date,
    tz_name: str = "UTC",
    employee_id: str | None = None,
) -> ReportSummary:
    if date_from > date_to:
        date_from, date_to = date_to, date_from
    if employee_id:
        requests = [r for r in requests if _owner(r) == employee_id]

    current = requests_in_range(requests, date_from, date_to, tz_name)
    prev_from, prev_to = previous_period(date_from, date_to)
    previous = requests_in_range(requests, prev_from, prev_to, tz_name)

    def count(rows, status):
        return sum(1 for r in rows if r.status == status)

    total = len(current)
    completed = count(current, RequestStatus.COMPLETED)
    completed_ids = {r.id for r in current if r.status == RequestStatus.COMPLETED}

    return ReportSummary(
        date_from=date_from,
        date_to=date_to,
        total=total,
        completed=completed,
        cancelled=count(current, RequestStatus.CANCELLED),
        in_progress=count(current, RequestStatus.IN_PROGRESS),
        pending=count(current, RequestStatus.PENDING),
        completion_rate=round(completed / total * 100) if total else 0,
        priority_stats={
            p.value: sum(1 for r in current if r.priority == p) for p in Priority
        },
        revenue=sum_by_category(i for i in items if i.request_id in completed_ids),
        employee_stats=employee_breakdown(
            current, items, employees, date_from, date_to, tz_name
        ),
        total_trend=period_trend(total, len(previous)),
        completed_trend=period_trend(
            completed, count(previous, RequestStatus.COMPLETED)
        ),
    )


def export_csv(summary: ReportSummary) -> bytes:
    """CSV-версия отчета с BOM, чтобы Excel корректно открыл кириллицу."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(
        [
            ["Отчет по заявкам", f"{summary.date_from} - {summary.date_to}"],
            [],
            ["Всего заявок", summary.total],
            ["Выполнено", summary.completed],
            ["В работе", summary.in_progress],
            ["Ожидают", summary.pending],
            ["Отменено", summary.cancelled],
            ["Процент выполнения", f"{summary.completion_rate}%"],
            ["Выручка: услуги", summary.revenue.service_sum],
            ["Выручка: товары", summary.revenue.product_sum],
            ["Выручка: всего", summary.revenue.total],
            [],
            [
                "Сотрудник",
                "Всего",
                "Выполнено",
                "Отменено",
                "В работе",
                "Процент выполнения",
                "Услуги",
                "Товары",
                "Итого",
            ],
        ]
    )
    for stat in summary.employee_stats:
        writer.writerow(
            [
                stat.name,
                stat.total,
                stat.completed,
                stat.cancelled,
                stat.in_progress,
                f"{stat.completion_rate}%",
                stat.service_sum,
                stat.product_sum,
                stat.revenue,
            ]
        )
    return buffer.getvalue().encode("utf-8-sig")


class ReportService:
    def __init__(
        self,
        store: RequestStore,
        employees: EmployeeDirectory,
        tz_name: str = "UTC",
    ):
        self.store = store
        self.employees = employees
        self.tz_name = tz_name

    async def build(
        self, date_from: date, date_to: date, employee_id: str | None = None
    ) -> ReportSummary:
        requests = await self.store.list_requests()
        items = await self.store.list_line_items()
        employees = await self.employees.get_all()
        logger.info(
            f"Building report {date_from}..{date_to} over {len(requests)} requests "
            f"and {len(items)} line items."
        )
        return build_report(
            requests, items, employees, date_from, date_to, self.tz_name, employee_id
        )
