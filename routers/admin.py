"""Admin endpoints: request adjudication, metadata backfill, registrations and backups."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from accounts.directory import UserDirectory
from accounts.models import RegistrationCheckResponse
from config.settings import Settings, get_settings
from core.dependencies import get_database, get_request_ledger, get_user_directory
from core.exceptions import InvalidTransitionError, PersistenceError, RequestNotFoundError
from core.sentry import capture_exception
from ledger.models import (
    BatchFetchReport,
    RequestStatus,
    RequestView,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from ledger.service import RequestLedger
from storage.db import Database

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

AUTH_RESPONSES: dict[int | str, dict] = {
    401: {"description": "Missing authorization"},
    403: {"description": "Invalid or missing token"},
}


def _validate_auth(
    settings: Settings,
    authorization: str | None,
) -> None:
    """Validate bearer token against ADMIN_TOKEN setting."""
    if not settings.admin_token:
        raise HTTPException(status_code=403, detail="Admin endpoint disabled (no ADMIN_TOKEN set)")

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or parts[1] != settings.admin_token:
        raise HTTPException(status_code=403, detail="Invalid token")


def require_admin(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(None),
) -> None:
    _validate_auth(settings, authorization)


@router.get(
    "/requests/pending",
    response_model=list[RequestView],
    summary="List submitted requests",
    responses=AUTH_RESPONSES,
    dependencies=[Depends(require_admin)],
)
async def list_pending(ledger: RequestLedger = Depends(get_request_ledger)):
    """Submitted requests with their metadata, if fetched yet."""
    try:
        return await ledger.list_pending()
    except PersistenceError as e:
        logger.error(f"Listing pending requests failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get(
    "/requests/archived",
    response_model=list[RequestView],
    summary="List archived requests",
    responses=AUTH_RESPONSES,
    dependencies=[Depends(require_admin)],
)
async def list_archived(ledger: RequestLedger = Depends(get_request_ledger)):
    """Archived requests that have metadata."""
    try:
        return await ledger.list_archived()
    except PersistenceError as e:
        logger.error(f"Listing archived requests failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post(
    "/requests/status",
    response_model=StatusUpdateResponse,
    summary="Adjudicate a submitted request",
    responses={
        **AUTH_RESPONSES,
        404: {"description": "Request not found"},
        409: {"description": "Request is no longer submitted"},
        422: {"description": "Unknown status"},
    },
    dependencies=[Depends(require_admin)],
)
async def update_status(
    body: StatusUpdateRequest,
    ledger: RequestLedger = Depends(get_request_ledger),
):
    """Move a submitted request to archived, cancelled or invalid."""
    try:
        new_status = RequestStatus.parse(body.new_status)
    except ValueError as e:
        return _status_response(422, False, str(e))

    try:
        view = await ledger.adjudicate(body.request_id, new_status)
    except RequestNotFoundError as e:
        return _status_response(404, False, e.message)
    except InvalidTransitionError as e:
        return _status_response(409, False, e.message)
    except PersistenceError as e:
        logger.error(f"Adjudicating request {body.request_id} failed: {e}")
        return _status_response(500, False, "Internal server error")
    except Exception as e:
        logger.exception(f"Unexpected error adjudicating request {body.request_id}: {e}")
        capture_exception(e)
        return _status_response(500, False, "Internal server error")

    return StatusUpdateResponse(
        success=True, message=f"Request {view.id} marked as {view.status_name}"
    )


def _status_response(status_code: int, success: bool, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=StatusUpdateResponse(success=success, message=message).model_dump(),
    )


@router.post(
    "/requests/fetch-metadata",
    response_model=BatchFetchReport,
    summary="Fetch metadata for requests that have none",
    responses=AUTH_RESPONSES,
    dependencies=[Depends(require_admin)],
)
async def fetch_missing_metadata(ledger: RequestLedger = Depends(get_request_ledger)):
    try:
        return await ledger.batch_fetch_missing_metadata()
    except PersistenceError as e:
        logger.error(f"Batch metadata fetch failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get(
    "/registrations/{chat_id}",
    response_model=RegistrationCheckResponse,
    summary="Check whether a Telegram user is registered",
    responses=AUTH_RESPONSES,
    dependencies=[Depends(require_admin)],
)
async def check_registration(
    chat_id: int,
    directory: UserDirectory = Depends(get_user_directory),
):
    try:
        registration = await directory.get(chat_id)
        admin = await directory.is_admin(chat_id)
    except PersistenceError as e:
        logger.error(f"Registration check for {chat_id} failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e

    if registration is None:
        return RegistrationCheckResponse(registered=False, admin=admin)
    return RegistrationCheckResponse(
        registered=True, database_username=registration.username, admin=admin
    )


@router.post(
    "/backup",
    summary="Back up the SQLite database",
    responses=AUTH_RESPONSES,
    dependencies=[Depends(require_admin)],
)
async def backup_database(db: Database = Depends(get_database)):
    """Copy the live database next to itself with a timestamped name."""
    try:
        backup_path = await db.backup()
    except PersistenceError as e:
        logger.error(f"Database backup failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e

    return JSONResponse(
        content={
            "status": "ok" if backup_path else "skipped",
            "backup_path": backup_path,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )
