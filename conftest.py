"""
Test configuration and shared fixtures for the Identity Reconciliation API
"""

import os
from datetime import datetime, timedelta, timezone

# Set test environment variables before importing the application
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from database import DatabaseManager
from main import app, get_identity_service
from services.contact_store import SqlAlchemyStoreProvider
from services.identity_service import IdentityService
from services.memory_store import InMemoryContactStore


class ManualClock:
    """Clock for the in-memory store; time only moves when told to"""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2023, 4, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 1) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def service(store):
    return IdentityService(store)


@pytest_asyncio.fixture
async def sqlite_manager():
    """DatabaseManager on a private in-memory SQLite database with tables created"""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.create_tables()
    yield manager
    await manager.dispose()


@pytest.fixture
def sqlite_provider(sqlite_manager):
    return SqlAlchemyStoreProvider(sqlite_manager)


@pytest_asyncio.fixture
async def client(service):
    """HTTP client talking to the app with the in-memory identity service injected"""
    app.dependency_overrides[get_identity_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
