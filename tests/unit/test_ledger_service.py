"""Unit tests for ledger/service.py with a mocked repository."""

from unittest.mock import AsyncMock

import pytest

from catalog.models import CatalogSource, MediaKind
from core.exceptions import (
    DuplicateRequestError,
    ExternalServiceError,
    InvalidTransitionError,
    NotificationDeliveryError,
    PersistenceError,
    RequestNotFoundError,
)
from ledger.models import RequestStatus
from ledger.repository import RequestRepository
from ledger.service import RequestLedger
from tests.factories import make_media_info, make_media_request, make_request_view


@pytest.fixture
def mock_repo():
    repo = AsyncMock(spec=RequestRepository)
    repo.find = AsyncMock(return_value=None)
    repo.create = AsyncMock(return_value=make_media_request())
    repo.get = AsyncMock(return_value=make_media_request())
    repo.transition = AsyncMock(return_value=True)
    repo.get_view = AsyncMock(
        return_value=make_request_view(status=RequestStatus.ARCHIVED)
    )
    repo.list_missing_metadata = AsyncMock(return_value=[])
    repo.list_all = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_notifier():
    notifier = AsyncMock()
    notifier.notify_requester = AsyncMock()
    return notifier


@pytest.fixture
def ledger(mock_repo, mock_catalog, mock_notifier):
    return RequestLedger(mock_repo, catalog=mock_catalog, notifier=mock_notifier, batch_delay=0)


class TestStatusParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (1, RequestStatus.ARCHIVED),
            ("2", RequestStatus.CANCELLED),
            ("invalid", RequestStatus.INVALID),
            ("Archived", RequestStatus.ARCHIVED),
            (RequestStatus.SUBMITTED, RequestStatus.SUBMITTED),
        ],
    )
    def test_parse(self, value, expected):
        assert RequestStatus.parse(value) == expected

    @pytest.mark.parametrize("value", ["done", 9, True])
    def test_parse_rejects(self, value):
        with pytest.raises(ValueError):
            RequestStatus.parse(value)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_creates_request_with_metadata(self, ledger, mock_repo):
        info = make_media_info()

        request = await ledger.submit("TMDB/TV", "12345", 1001, info)

        assert request.id == 7
        mock_repo.create.assert_awaited_once_with("TMDB/TV", "12345", 1001)
        mock_repo.upsert_metadata.assert_awaited_once_with(7, info)

    @pytest.mark.asyncio
    async def test_existing_request_is_duplicate(self, ledger, mock_repo):
        mock_repo.find.return_value = make_media_request()

        with pytest.raises(DuplicateRequestError):
            await ledger.submit("TMDB/TV", "12345", 1001)

        mock_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_insert_race_is_duplicate(self, ledger, mock_repo):
        mock_repo.create.side_effect = DuplicateRequestError("TMDB/TV", "12345")

        with pytest.raises(DuplicateRequestError):
            await ledger.submit("TMDB/TV", "12345", 1001)

    @pytest.mark.asyncio
    async def test_metadata_failure_keeps_request(self, ledger, mock_repo):
        mock_repo.upsert_metadata.side_effect = PersistenceError("locked")

        request = await ledger.submit("TMDB/TV", "12345", 1001, make_media_info())

        assert request.id == 7

    @pytest.mark.asyncio
    async def test_reports_event(self, mock_repo, mock_posthog_client):
        ledger = RequestLedger(mock_repo, posthog_client=mock_posthog_client)

        await ledger.submit("BGM.TV", "1", 1001)

        kwargs = mock_posthog_client.capture.call_args.kwargs
        assert kwargs["event"] == "media_request_submitted"
        assert kwargs["properties"] == {"source": "BGM.TV", "has_metadata": False}


class TestAdjudicate:
    @pytest.mark.asyncio
    async def test_transitions_and_notifies(self, ledger, mock_repo, mock_notifier):
        view = await ledger.adjudicate(7, "archived")

        mock_repo.transition.assert_awaited_once_with(7, RequestStatus.ARCHIVED)
        mock_notifier.notify_requester.assert_awaited_once_with(view)
        assert view.status == RequestStatus.ARCHIVED

    @pytest.mark.asyncio
    async def test_missing_request(self, ledger, mock_repo, mock_notifier):
        mock_repo.transition.return_value = False
        mock_repo.get.return_value = None

        with pytest.raises(RequestNotFoundError):
            await ledger.adjudicate(99, RequestStatus.CANCELLED)

        mock_notifier.notify_requester.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_adjudicated(self, ledger, mock_repo, mock_notifier):
        mock_repo.transition.return_value = False
        mock_repo.get.return_value = make_media_request(status=RequestStatus.ARCHIVED)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await ledger.adjudicate(7, RequestStatus.CANCELLED)

        assert exc_info.value.current == "ARCHIVED"
        mock_notifier.notify_requester.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_back_to_submitted_rejected(self, ledger, mock_repo):
        with pytest.raises(InvalidTransitionError):
            await ledger.adjudicate(7, 0)

        mock_repo.transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_status(self, ledger):
        with pytest.raises(ValueError):
            await ledger.adjudicate(7, "done")

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_undo(self, ledger, mock_repo, mock_notifier):
        mock_notifier.notify_requester.side_effect = NotificationDeliveryError("blocked", chat_id=1001)

        view = await ledger.adjudicate(7, RequestStatus.ARCHIVED)

        assert view.status == RequestStatus.ARCHIVED
        mock_repo.transition.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_notifier(self, mock_repo):
        ledger = RequestLedger(mock_repo)

        view = await ledger.adjudicate(7, RequestStatus.ARCHIVED)

        assert view.id == 7


class TestBatchFetch:
    @pytest.mark.asyncio
    async def test_failures_do_not_stop_batch(self, ledger, mock_repo, mock_catalog):
        mock_repo.list_missing_metadata.return_value = [
            make_media_request(id=1, source="TMDB/Movie", media_id="550"),
            make_media_request(id=2, source="BGM.TV", media_id="999"),
            make_media_request(id=3, source="IMDB/Movie", media_id="1"),
        ]
        mock_catalog.fetch.side_effect = [
            make_media_info(title="Fight Club"),
            ExternalServiceError("BGM.TV API returned status 404", tag="BGM.TV"),
        ]

        report = await ledger.batch_fetch_missing_metadata()

        assert report.total_processed == 3
        assert report.successful == 1
        assert report.failed == 2
        assert report.errors[0] == "Request 2 (BGM.TV 999): BGM.TV API returned status 404"
        assert report.errors[1].startswith("Request 3 (IMDB/Movie 1):")
        mock_catalog.fetch.assert_any_await(CatalogSource.TMDB, MediaKind.MOVIE, "550")
        mock_catalog.fetch.assert_any_await(CatalogSource.BGM, MediaKind.TV, "999")
        mock_repo.upsert_metadata.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nothing_missing(self, ledger, mock_catalog):
        report = await ledger.batch_fetch_missing_metadata()

        assert report.total_processed == 0
        assert report.errors == []
        mock_catalog.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_without_catalog(self, mock_repo):
        mock_repo.list_missing_metadata.return_value = [make_media_request()]
        ledger = RequestLedger(mock_repo, batch_delay=0)

        report = await ledger.batch_fetch_missing_metadata()

        assert report.failed == 1
        assert "No metadata catalog configured" in report.errors[0]


class TestExportCsv:
    @pytest.mark.asyncio
    async def test_header_and_rows(self, ledger, mock_repo):
        mock_repo.list_all.return_value = [
            make_request_view(status=RequestStatus.ARCHIVED),
            make_request_view(id=8, source="BGM.TV", media_id="1", title=None),
        ]

        content = await ledger.export_csv()

        assert content.startswith("﻿".encode())
        lines = content.decode("utf-8-sig").splitlines()
        assert lines[0] == "id,source,media_id,request_user,status,title,created_at,updated_at"
        assert lines[1].startswith("7,TMDB/TV,12345,1001,archived,示例剧集,")
        assert lines[2].startswith("8,BGM.TV,1,1001,submitted,,")
