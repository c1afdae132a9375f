"""Shared test fixtures for pytest."""

import itertools
from dataclasses import dataclass
from unittest.mock import AsyncMock

import pytest

from accounts.directory import UserDirectory
from accounts.emby import EmbyClient
from catalog.service import CatalogService
from core.exceptions import ExternalServiceError
from ledger.service import RequestLedger
from tests.factories import make_media_info


@dataclass
class SentMessage:
    chat_id: int
    text: str
    buttons: list | None
    message_id: int


class FakeTransport:
    """In-memory ChatTransport that records every outbound call."""

    def __init__(self):
        self.sent: list[SentMessage] = []
        self.deleted: list[tuple[int, int]] = []
        self.documents: list[tuple[int, str, bytes, str | None]] = []
        self.answered: list[str] = []
        self.fail_chats: set[int] = set()
        self._ids = itertools.count(9000)

    async def send_message(self, chat_id, text, buttons=None):
        if chat_id in self.fail_chats:
            raise ExternalServiceError("chat not found", tag="Telegram")
        message = SentMessage(chat_id, text, buttons, next(self._ids))
        self.sent.append(message)
        return message.message_id

    async def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))

    async def send_document(self, chat_id, filename, content, caption=None):
        self.documents.append((chat_id, filename, content, caption))

    async def answer_callback(self, callback_id, text=None):
        self.answered.append(callback_id)

    def texts(self, chat_id: int | None = None) -> list[str]:
        return [m.text for m in self.sent if chat_id is None or m.chat_id == chat_id]

    @property
    def last(self) -> SentMessage:
        return self.sent[-1]


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def mock_directory():
    """Create a mock user directory with nobody registered."""
    directory = AsyncMock(spec=UserDirectory)
    directory.get = AsyncMock(return_value=None)
    directory.is_registered = AsyncMock(return_value=False)
    directory.is_admin = AsyncMock(return_value=False)
    directory.register = AsyncMock()
    directory.delete = AsyncMock(return_value=True)
    return directory


@pytest.fixture
def mock_emby():
    """Create a mock Emby client."""
    emby = AsyncMock(spec=EmbyClient)
    emby.create_user = AsyncMock(return_value="42")
    emby.reset_password = AsyncMock()
    emby.delete_user = AsyncMock()
    emby.check_api = AsyncMock(return_value=True)
    return emby


@pytest.fixture
def mock_catalog():
    """Create a mock catalog service returning a sample item."""
    catalog = AsyncMock(spec=CatalogService)
    catalog.fetch = AsyncMock(return_value=make_media_info())
    catalog.configured_sources = []
    return catalog


@pytest.fixture
def mock_ledger():
    """Create a mock request ledger with no existing requests."""
    ledger = AsyncMock(spec=RequestLedger)
    ledger.find = AsyncMock(return_value=None)
    ledger.submit = AsyncMock()
    ledger.export_csv = AsyncMock(return_value=b"id,source\r\n")
    return ledger
