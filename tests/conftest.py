"""
Общие фикстуры тестов: хранилище в памяти, сервисы и пользователи.
"""

import os
from datetime import timedelta
from decimal import Decimal

# Настройки читаются из окружения при импорте fieldservice.core.config
os.environ.setdefault("BOT_TOKEN", "123456:TEST")
os.environ.setdefault("ADMIN_IDS", "100")
os.environ.setdefault("TECH_CHAT_ID", "-1001")
os.environ.setdefault("GOOGLE_SHEET_ID", "test-sheet")
os.environ.setdefault("GOOGLE_DRIVE_FOLDER_ID", "test-folder")

import pytest  # noqa: E402

from fieldservice.core.session import Session  # noqa: E402
from fieldservice.models.employee import Role  # noqa: E402
from fieldservice.models.product import Product, ProductCategory  # noqa: E402
from fieldservice.services.catalog_service import ProductCatalog  # noqa: E402
from fieldservice.services.employee_service import EmployeeDirectory  # noqa: E402
from fieldservice.services.lifecycle import LifecycleEngine  # noqa: E402
from fieldservice.services.request_store import RequestStore  # noqa: E402

from tests.fakes import (  # noqa: E402
    DISPATCHER,
    ENGINEER,
    MASTER,
    FakeClock,
    InMemoryBackend,
    make_session,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> InMemoryBackend:
    backend = InMemoryBackend()
    for employee in (MASTER, ENGINEER, DISPATCHER):
        backend.seed("employees", employee.model_dump(mode="json"))
    return backend


@pytest.fixture
def employees(backend) -> EmployeeDirectory:
    return EmployeeDirectory(backend, admin_ids=[100], cache_ttl_seconds=60)


@pytest.fixture
def catalog(backend) -> ProductCatalog:
    return ProductCatalog(backend)


@pytest.fixture
async def products(catalog) -> dict[str, Product]:
    service = await catalog.add(
        Product(id="prod-service", name="Монтаж домофона", price=Decimal("100"))
    )
    product = await catalog.add(
        Product(
            id="prod-product",
            name="Трубка",
            price=Decimal("50"),
            category=ProductCategory.PRODUCT,
        )
    )
    return {"service": service, "product": product}


@pytest.fixture
def store(backend, employees, catalog, clock) -> RequestStore:
    return RequestStore(
        backend, employees, catalog, escalation_age=timedelta(days=2), clock=clock
    )


@pytest.fixture
def lifecycle(store, clock) -> LifecycleEngine:
    return LifecycleEngine(store, tz_name="Europe/Moscow", clock=clock)


@pytest.fixture
def master() -> Session:
    return make_session(MASTER)


@pytest.fixture
def engineer() -> Session:
    return make_session(ENGINEER)


@pytest.fixture
def dispatcher() -> Session:
    return make_session(DISPATCHER)


@pytest.fixture
def admin() -> Session:
    return make_session(None, Role.ADMIN, user_id=100)


@pytest.fixture
async def new_request(store, dispatcher):
    return await store.create_request(
        {
            "name": "Клиент",
            "phone": "+7 (900) 123-45-67",
            "address": "ул. Ленина, 1, подъезд 2",
            "message": "Не работает домофон",
        },
        dispatcher,
    )
