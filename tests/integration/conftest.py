"""Integration test fixtures.

Provides a real Database backed by in-memory SQLite with the bot schema, and
the user directory and request ledger on top of it.
"""

import pytest
import pytest_asyncio

from accounts.directory import UserDirectory
from config.settings import Settings
from ledger.repository import RequestRepository
from ledger.service import RequestLedger
from notifications.dispatcher import NotificationDispatcher
from storage.db import Database

ADMIN_TOKEN = "integration-token"


@pytest_asyncio.fixture
async def database():
    """Real Database on in-memory SQLite with tables created."""
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def repository(database):
    return RequestRepository(database)


@pytest.fixture
def directory(database):
    return UserDirectory(database, admin_ids=[9999])


@pytest.fixture
def dispatcher(fake_transport):
    return NotificationDispatcher(fake_transport, audience=[-100], timeout=1.0)


@pytest.fixture
def ledger(repository, mock_catalog, dispatcher):
    return RequestLedger(repository, catalog=mock_catalog, notifier=dispatcher, batch_delay=0)


@pytest.fixture
def test_settings():
    """Settings with no real tokens, telemetry disabled."""
    return Settings(
        telegram_bot_token=None,
        emby_url=None,
        emby_token=None,
        tmdb_access_token=None,
        bgm_access_token=None,
        sentry_dsn=None,
        posthog_api_key=None,
        enable_telemetry=False,
        admin_token=ADMIN_TOKEN,
        database_path=":memory:",
    )


@pytest_asyncio.fixture
async def app_client(database, ledger, dispatcher, test_settings):
    """httpx AsyncClient with the real database and ledger; Telegram replaced by a fake."""
    from httpx import ASGITransport, AsyncClient

    from config.settings import get_settings
    from core.dependencies import (
        get_database,
        get_dispatcher,
        get_posthog_client,
        get_request_ledger,
    )
    from main import app

    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_request_ledger] = lambda: ledger
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_posthog_client] = lambda: None
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {ADMIN_TOKEN}"},
    ) as client:
        yield client

    app.dependency_overrides.clear()
