"""
Модели каталога товаров и услуг.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from fieldservice.core.timeutils import utcnow

# Строки, которыми в старых данных помечались товары (в отличие от услуг)
_PRODUCT_ALIASES = {"product", "товар", "товары"}


class ProductCategory(str, Enum):
    SERVICE = "service"
    PRODUCT = "product"

    @classmethod
    def parse(cls, value) -> "ProductCategory":
        """Приводит произвольную строку категории к одному из двух значений."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.SERVICE
        if str(value).strip().casefold() in _PRODUCT_ALIASES:
            return cls.PRODUCT
        return cls.SERVICE


class Product(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0)
    unit: str = "шт"
    category: ProductCategory = ProductCategory.SERVICE
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value):
        return ProductCategory.parse(value)
