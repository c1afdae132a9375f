"""Request ledger: submission, adjudication and metadata reconciliation."""

import asyncio
import csv
import io
import logging
from typing import Protocol

from posthog import Posthog

from catalog.models import CatalogSource, MediaInfo, parse_source_tag
from catalog.service import CatalogService
from core.exceptions import (
    DuplicateRequestError,
    InvalidTransitionError,
    NotificationDeliveryError,
    NyaMediaError,
    RequestNotFoundError,
)
from core.sentry import capture_exception
from core.telemetry import RequestTelemetry, capture_event, report_telemetry
from ledger.models import BatchFetchReport, MediaRequest, RequestStatus, RequestView
from ledger.repository import RequestRepository

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "source",
    "media_id",
    "request_user",
    "status",
    "title",
    "created_at",
    "updated_at",
)


class RequesterNotifier(Protocol):
    async def notify_requester(self, request: RequestView) -> None: ...


class RequestLedger:
    """The only writer of media request status.

    Duplicate detection and the submitted-only transition are delegated to
    single SQL statements in ``RequestRepository``; no in-process lock is held
    around them.
    """

    def __init__(
        self,
        repo: RequestRepository,
        catalog: CatalogService | None = None,
        notifier: RequesterNotifier | None = None,
        batch_delay: float = 0.5,
        posthog_client: Posthog | None = None,
    ):
        self.repo = repo
        self.catalog = catalog
        self.notifier = notifier
        self.batch_delay = batch_delay
        self.posthog_client = posthog_client

    async def find(self, source: str, media_id: str) -> MediaRequest | None:
        return await self.repo.find(source, media_id)

    async def submit(
        self,
        source: str,
        media_id: str,
        request_user: int,
        metadata: MediaInfo | None = None,
    ) -> MediaRequest:
        """Create a submitted request and attach already-fetched metadata.

        Raises:
            DuplicateRequestError: If the (source, media_id) pair was requested before,
                including when a concurrent submission won the insert.
        """
        if await self.repo.find(source, media_id) is not None:
            raise DuplicateRequestError(source, media_id)

        request = await self.repo.create(source, media_id, request_user)
        logger.info(f"Request {request.id} submitted: {source} {media_id} by {request_user}")

        if metadata is not None:
            try:
                await self.repo.upsert_metadata(request.id, metadata)
            except NyaMediaError as e:
                # Metadata can be fetched later by the batch job.
                logger.warning(f"Could not store metadata for request {request.id}: {e}")

        capture_event(
            self.posthog_client,
            "media_request_submitted",
            {"source": source, "has_metadata": metadata is not None},
        )
        return request

    async def adjudicate(
        self, request_id: int, new_status: RequestStatus | int | str
    ) -> RequestView:
        """Move a submitted request to a terminal status and notify the requester.

        Raises:
            RequestNotFoundError: No request with this id.
            InvalidTransitionError: The request is no longer submitted, or the
                target status is not terminal.
        """
        target = RequestStatus.parse(new_status)

        if not target.is_terminal:
            current = await self.repo.get(request_id)
            if current is None:
                raise RequestNotFoundError(request_id)
            raise InvalidTransitionError(request_id, current.status.name, target.name)

        if not await self.repo.transition(request_id, target):
            current = await self.repo.get(request_id)
            if current is None:
                raise RequestNotFoundError(request_id)
            raise InvalidTransitionError(request_id, current.status.name, target.name)

        logger.info(f"Request {request_id} adjudicated as {target.name}")
        view = await self.repo.get_view(request_id)
        assert view is not None

        capture_event(self.posthog_client, "request_adjudicated", {"status": target.name.lower()})
        await self._notify(view)
        return view

    async def _notify(self, view: RequestView) -> None:
        if self.notifier is None:
            logger.warning(f"No notifier configured, requester of {view.id} not notified")
            return
        try:
            await self.notifier.notify_requester(view)
        except NotificationDeliveryError as e:
            logger.error(f"Failed to notify requester {view.request_user} of request {view.id}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error notifying requester of request {view.id}: {e}")
            capture_exception(e, {"request_id": view.id, "chat_id": view.request_user})

    async def list_pending(self) -> list[RequestView]:
        return await self.repo.list_pending()

    async def list_archived(self) -> list[RequestView]:
        return await self.repo.list_archived()

    async def batch_fetch_missing_metadata(self) -> BatchFetchReport:
        """Fetch and store metadata for every request that has none.

        Individual failures are recorded in the report and do not stop the batch.
        """
        missing = await self.repo.list_missing_metadata()
        report = BatchFetchReport(total_processed=len(missing))
        telemetry = RequestTelemetry()
        logger.info(f"Batch metadata fetch: {len(missing)} requests without metadata")

        for index, request in enumerate(missing):
            if index and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            try:
                with telemetry.track_step(f"request_{request.id}"):
                    await self._fetch_one(request, telemetry)
            except (NyaMediaError, ValueError) as e:
                message = e.message if isinstance(e, NyaMediaError) else str(e)
                logger.warning(f"Metadata fetch failed for request {request.id}: {message}")
                report.failed += 1
                report.errors.append(
                    f"Request {request.id} ({request.source} {request.media_id}): {message}"
                )
            else:
                report.successful += 1

        logger.info(
            f"Batch metadata fetch finished: {report.successful} ok, {report.failed} failed"
        )
        report_telemetry(
            self.posthog_client,
            telemetry,
            "metadata_batch_fetched",
            {"total": report.total_processed, "failed": report.failed},
        )
        return report

    async def _fetch_one(self, request: MediaRequest, telemetry: RequestTelemetry) -> None:
        if self.catalog is None:
            raise ValueError("No metadata catalog configured")
        source, kind = parse_source_tag(request.source)
        telemetry.record_api_call("tmdb" if source == CatalogSource.TMDB else "bgm")
        info = await self.catalog.fetch(source, kind, request.media_id)
        await self.repo.upsert_metadata(request.id, info)

    async def export_csv(self) -> bytes:
        """All requests with their titles as UTF-8 CSV (with BOM for spreadsheet apps)."""
        rows = await self.repo.list_all()
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_COLUMNS)
        for row in rows:
            writer.writerow(
                [
                    row.id,
                    row.source,
                    row.media_id,
                    row.request_user,
                    row.status.name.lower(),
                    row.title or "",
                    row.created_at,
                    row.updated_at,
                ]
            )
        return buffer.getvalue().encode("utf-8-sig")
