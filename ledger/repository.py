"""SQL access for media requests and their metadata."""

import logging

import aiosqlite

from catalog.models import MediaInfo
from core.exceptions import DuplicateRequestError
from ledger.models import MediaMetadata, MediaRequest, RequestStatus, RequestView
from storage.db import Database, utcnow_iso

logger = logging.getLogger(__name__)

REQUEST_COLUMNS = "id, source, media_id, request_user, status, created_at, updated_at"

VIEW_SELECT = """
    SELECT r.id, r.source, r.media_id, r.request_user, r.status,
           r.created_at, r.updated_at, m.title, m.summary, m.poster
    FROM media_requests r
"""


class RequestRepository:
    """Reads and writes ``media_requests`` and ``media``.

    Uniqueness of ``(source, media_id)`` and the submitted-only status update
    are enforced by single SQL statements, so concurrent callers cannot both
    succeed for the same key.
    """

    def __init__(self, db: Database):
        self.db = db

    async def create(self, source: str, media_id: str, request_user: int) -> MediaRequest:
        now = utcnow_iso()
        try:
            _, row_id = await self.db.execute(
                "INSERT INTO media_requests "
                "(source, media_id, request_user, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (source, media_id, request_user, int(RequestStatus.SUBMITTED), now, now),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateRequestError(source, media_id) from e

        assert row_id is not None
        return MediaRequest(
            id=row_id,
            source=source,
            media_id=media_id,
            request_user=request_user,
            status=RequestStatus.SUBMITTED,
            created_at=now,
            updated_at=now,
        )

    async def get(self, request_id: int) -> MediaRequest | None:
        row = await self.db.fetchone(
            f"SELECT {REQUEST_COLUMNS} FROM media_requests WHERE id = ?", (request_id,)
        )
        return MediaRequest(**dict(row)) if row else None

    async def find(self, source: str, media_id: str) -> MediaRequest | None:
        row = await self.db.fetchone(
            f"SELECT {REQUEST_COLUMNS} FROM media_requests WHERE source = ? AND media_id = ?",
            (source, media_id),
        )
        return MediaRequest(**dict(row)) if row else None

    async def transition(self, request_id: int, new_status: RequestStatus) -> bool:
        """Move a submitted request to ``new_status``.

        Returns False when the request is missing or no longer submitted.
        """
        updated, _ = await self.db.execute(
            "UPDATE media_requests SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (int(new_status), utcnow_iso(), request_id, int(RequestStatus.SUBMITTED)),
        )
        return updated == 1

    async def upsert_metadata(self, request_id: int, info: MediaInfo) -> None:
        now = utcnow_iso()
        await self.db.execute(
            """
            INSERT INTO media (media_request_id, title, summary, poster, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (media_request_id) DO UPDATE SET
                title = excluded.title,
                summary = excluded.summary,
                poster = excluded.poster,
                updated_at = excluded.updated_at
            """,
            (request_id, info.title, info.summary or None, info.poster or None, now, now),
        )

    async def get_metadata(self, request_id: int) -> MediaMetadata | None:
        row = await self.db.fetchone(
            "SELECT media_request_id, title, summary, poster, created_at, updated_at "
            "FROM media WHERE media_request_id = ?",
            (request_id,),
        )
        return MediaMetadata(**dict(row)) if row else None

    async def get_view(self, request_id: int) -> RequestView | None:
        row = await self.db.fetchone(
            VIEW_SELECT + " LEFT JOIN media m ON m.media_request_id = r.id WHERE r.id = ?",
            (request_id,),
        )
        return RequestView(**dict(row)) if row else None

    async def list_pending(self) -> list[RequestView]:
        rows = await self.db.fetchall(
            VIEW_SELECT
            + " LEFT JOIN media m ON m.media_request_id = r.id"
            + " WHERE r.status = ? ORDER BY r.created_at, r.id",
            (int(RequestStatus.SUBMITTED),),
        )
        return [RequestView(**dict(row)) for row in rows]

    async def list_archived(self) -> list[RequestView]:
        rows = await self.db.fetchall(
            VIEW_SELECT
            + " JOIN media m ON m.media_request_id = r.id"
            + " WHERE r.status = ? ORDER BY r.updated_at DESC, r.id DESC",
            (int(RequestStatus.ARCHIVED),),
        )
        return [RequestView(**dict(row)) for row in rows]

    async def list_all(self) -> list[RequestView]:
        rows = await self.db.fetchall(
            VIEW_SELECT + " LEFT JOIN media m ON m.media_request_id = r.id ORDER BY r.id"
        )
        return [RequestView(**dict(row)) for row in rows]

    async def list_missing_metadata(self) -> list[MediaRequest]:
        rows = await self.db.fetchall(
            "SELECT r.id, r.source, r.media_id, r.request_user, r.status, "
            "r.created_at, r.updated_at "
            "FROM media_requests r LEFT JOIN media m ON m.media_request_id = r.id "
            "WHERE m.id IS NULL ORDER BY r.id"
        )
        return [MediaRequest(**dict(row)) for row in rows]
