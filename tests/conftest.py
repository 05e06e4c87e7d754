from datetime import datetime, timedelta

import anyio
import pytest
from fastapi.testclient import TestClient

from budget_server.app import create_app
from budget_server.config import AppConfig
from budget_server.database import TenantDatabaseLocator
from budget_server.managers import CategoryManager, RecordManager

SESSION_SECRET = "s" * 64
BASE_TIME = datetime(2025, 1, 1, 9, 30)


@pytest.fixture
def data_path(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def locator(data_path):
    return TenantDatabaseLocator(data_path)


@pytest.fixture
def handle(locator):
    return anyio.run(locator.resolve, "alice")


@pytest.fixture
def records(handle):
    return RecordManager(handle)


@pytest.fixture
def categories(handle):
    return CategoryManager(handle)


@pytest.fixture
def client(data_path):
    config = AppConfig(data_path=str(data_path), session_secret=SESSION_SECRET)
    with TestClient(create_app(config)) as test_client:
        yield test_client


def at(days: int = 0, hours: int = 0) -> datetime:
    return BASE_TIME + timedelta(days=days, hours=hours)


async def seed_records(records, category_id, count, name="Lunch"):
    created = []
    for index in range(count):
        created.append(await records.create_record({
            "name": f"{name} {index}",
            "amount": "10.00",
            "category_id": category_id,
            "occurred_at": at(days=index),
        }))
    return created
