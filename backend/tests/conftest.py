import os
import sys

# Configure before dineflow.config is imported anywhere.
os.environ.setdefault("ENVIRONMENT", "dev")
os.environ.setdefault("REAPER_INTERVAL_SECONDS", "0")
os.environ.setdefault("USE_ALEMBIC", "false")
os.environ.setdefault("VAT_RATE", "0.12")

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from dineflow.db.models import MenuItem, RestaurantTable
from dineflow.storage import SQLAlchemyStorage


def make_storage(db_url: str, **kwargs) -> SQLAlchemyStorage:
    """Storage with fast retries so lock contention doesn't slow the suite."""
    kwargs.setdefault("use_alembic", False)
    kwargs.setdefault("retry_attempts", 5)
    kwargs.setdefault("retry_base_delay", 0.01)
    kwargs.setdefault("retry_max_delay", 0.05)
    return SQLAlchemyStorage(db_url, **kwargs)


@pytest.fixture
def storage(tmp_path):
    """File-backed SQLite storage (threads in concurrency tests need a real file)."""
    storage = make_storage(f"sqlite:///{tmp_path / 'dineflow.db'}")
    yield storage
    storage.close()


def _seed(db):
    tables = [RestaurantTable(table_number=str(n), capacity=4) for n in range(1, 5)]
    menu = {
        "burger": MenuItem(name="Burger", price=1250, category="mains"),
        "platter": MenuItem(name="Sharing Platter", price=10000, category="mains"),
        "lemonade": MenuItem(name="Lemonade", price=300, category="drinks"),
        "soup": MenuItem(name="Soup of the Day", price=650, category="starters", is_available=False),
    }
    db.add_all(tables + list(menu.values()))
    db.flush()
    return {
        "tables": [t.id for t in tables],
        "menu": {key: item.id for key, item in menu.items()},
    }


@pytest.fixture
def seeded(storage):
    """Four free tables and a small menu. Returns their ids."""
    return storage.run(_seed)


@pytest_asyncio.fixture
async def client(storage):
    """Async HTTP client bound to the test storage."""
    from dineflow.main import app
    from dineflow.db.dependencies import get_storage

    original_overrides = app.dependency_overrides.copy()
    original_storage = getattr(app.state, "storage", None)
    app.state.storage = storage
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides = original_overrides
        app.state.storage = original_storage


async def signup_and_login(client, username, password="secret123", roles=("waiter",)):
    signup_response = await client.post(
        "/api/auth/signup",
        json={"username": username, "password": password, "roles": list(roles)},
    )
    assert signup_response.status_code == 200, signup_response.text

    login_response = await client.post(
        "/api/auth/login",
        json={"username": username, "password": password},
    )
    assert login_response.status_code == 200
    return login_response.json()["access_token"]


@pytest_asyncio.fixture
async def waiter_headers(client):
    token = await signup_and_login(client, "waiter1", roles=["waiter"])
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_headers(client):
    token = await signup_and_login(client, "manager1", roles=["manager"])
    return {"Authorization": f"Bearer {token}"}
