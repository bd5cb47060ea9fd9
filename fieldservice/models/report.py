"""
Модели агрегированных отчетов.
"""

from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

TrendDirection = Literal["up", "down", "flat", "neutral"]


class CategorySums(BaseModel):
    service_sum: Decimal = Decimal("0")
    product_sum: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class EmployeeStat(BaseModel):
    employee_id: str
    name: str
    total: int = 0
    completed: int = 0
    cancelled: int = 0
    in_progress: int = 0
    service_sum: Decimal = Decimal("0")
    product_sum: Decimal = Decimal("0")
    revenue: Decimal = Decimal("0")

    @property
    def completion_rate(self) -> int:
        return round(self.completed / self.total * 100) if self.total else 0


class Trend(BaseModel):
    """Изменение показателя относительно предыдущего периода."""

    direction: TrendDirection
    percent: int | None = None
    label: str


class ReportSummary(BaseModel):
    date_from: date
    date_to: date
    total: int = 0
    completed: int = 0
    cancelled: int = 0
    in_progress: int = 0
    pending: int = 0
    completion_rate: int = 0
    priority_stats: dict[str, int] = Field(default_factory=dict)
    revenue: CategorySums = Field(default_factory=CategorySums)
    employee_stats: list[EmployeeStat] = Field(default_factory=list)
    total_trend: Trend | None = None
    completed_trend: Trend | None = None
