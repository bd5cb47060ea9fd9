"""
Каталог товаров и услуг.
"""

import logging
from decimal import Decimal

from fieldservice.core.exceptions import NotFoundError
from fieldservice.models.product import Product
from fieldservice.models.schema import PRODUCTS, from_row, to_row
from fieldservice.services.backend import DataBackend, OrderBy

logger = logging.getLogger(__name__)


class ProductCatalog:
    def __init__(self, backend: DataBackend):
        self.backend = backend

    async def list_products(self, active_only: bool = True) -> list[Product]:
        filters = {"is_active": True} if active_only else None
        rows = await self.backend.select(PRODUCTS, filters, order=OrderBy("name"))
        return [from_row(Product, row) for row in rows]

    async def get(self, product_id: str) -> Product:
        rows = await self.backend.select(PRODUCTS, {"id": product_id}, limit=1)
        if not rows:
            raise NotFoundError("Товар", product_id)
        return from_row(Product, rows[0])

    async def add(self, product: Product) -> Product:
        await self.backend.insert(PRODUCTS, to_row(product))
        logger.info(
            f"Product {product.id} '{product.name}' added at {product.price} ({product.category.value})."
        )
        return product

    async def update(self, product_id: str, **changes) -> Product:
        current = await self.get(product_id)
        # Валидируем изменения через модель, чтобы не записать отрицательную цену
        candidate = Product.model_validate({**current.model_dump(), **changes})
        patch = {key: getattr(candidate, key) for key in changes}
        updated = await self.backend.update(PRODUCTS, patch, {"id": product_id})
        logger.info(f"Product {product_id} updated: {sorted(changes)}.")
        return from_row(Product, updated[0]) if updated else candidate

    async def set_price(self, product_id: str, price: Decimal) -> Product:
        return await self.update(product_id, price=price)

    async def set_active(self, product_id: str, is_active: bool) -> Product:
        return await self.update(product_id, is_active=is_active)
