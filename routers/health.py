"""Health check router with real dependency connectivity checks."""

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from accounts.emby import EmbyClient
from catalog.service import CatalogService
from config.settings import Settings, get_settings
from core.dependencies import get_catalog_service, get_database, get_emby_client
from storage.db import Database

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

CHECK_TIMEOUT = 3.0
CORE_SERVICES = {"database"}


async def _check_database(db: Database) -> str:
    """Ping the SQLite database."""
    return "ok" if await db.is_available() else "error"


async def _check_emby(emby: EmbyClient | None) -> str:
    """Ping the Emby public system info endpoint."""
    if emby is None:
        return "unavailable"
    return "ok" if await emby.check_api() else "error"


async def _check_catalog(catalog: CatalogService | None) -> str:
    if catalog is None or not catalog.configured_sources:
        return "unavailable"
    return "ok"


async def _run_check(coro) -> str:
    """Run a single health check with a timeout."""
    try:
        return await asyncio.wait_for(coro, timeout=CHECK_TIMEOUT)
    except TimeoutError:
        return "timeout"


@router.get(
    "/health",
    summary="Health check",
    responses={
        200: {"description": "Service is healthy or degraded"},
        503: {"description": "Service is unhealthy (core dependency down)"},
    },
)
async def health_check(
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_database),
    emby: EmbyClient | None = Depends(get_emby_client),
    catalog: CatalogService | None = Depends(get_catalog_service),
):
    """Health check with real connectivity probes for every dependency."""
    results = await asyncio.gather(
        _run_check(_check_database(db)),
        _run_check(_check_emby(emby)),
        _run_check(_check_catalog(catalog)),
    )

    services = {
        "database": results[0],
        "emby": results[1],
        "catalog": results[2],
    }

    core_ok = all(services[s] == "ok" for s in CORE_SERVICES)
    all_configured_ok = all(v in ("ok", "unavailable") for v in services.values())

    if core_ok and all_configured_ok:
        status = "healthy"
    elif core_ok:
        status = "degraded"
    else:
        status = "unhealthy"

    body = {
        "status": status,
        "version": settings.app_version,
        "services": services,
    }

    status_code = 200 if status in ("healthy", "degraded") else 503
    return JSONResponse(content=body, status_code=status_code)
