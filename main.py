"""Main application entry point for the NyaMedia bot service."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from config.settings import get_settings
from core.dependencies import (
    close_clients,
    close_database,
    flush_posthog,
    get_database,
    shutdown_posthog,
    start_chat_bot,
    stop_chat_bot,
)
from core.logging import setup_logging
from core.sentry import init_sentry
from routers.admin import router as admin_router
from routers.health import router as health_router
from routers.webhook import router as webhook_router

load_dotenv()

settings = get_settings()

init_sentry(
    dsn=settings.sentry_dsn,
    environment="production" if settings.log_level != "DEBUG" else "development",
    release=settings.app_version,
)

log_file = None
if settings.log_level != "DEBUG":
    log_dir = Path("/app/logs") if Path("/app/logs").exists() else Path("logs")
    log_file = log_dir / "nyamedia-bot.log"
setup_logging(level=settings.log_level, log_file=log_file)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan with proper startup and shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Emby provisioning: {'configured' if settings.emby_configured else 'disabled'}")

    await get_database(settings)
    await start_chat_bot(settings)

    yield

    logger.info("Shutting down application")
    await stop_chat_bot()
    shutdown_posthog()
    await close_clients()
    await close_database()
    logger.info("All services shut down")


app = FastAPI(
    title=settings.app_name,
    description="Emby account provisioning and media request tracking over Telegram",
    version=settings.app_version,
    lifespan=lifespan,
)


@app.middleware("http")
async def posthog_flush_middleware(request: Request, call_next):
    """Flush PostHog events after each request to prevent data loss."""
    response = await call_next(request)
    flush_posthog()
    return response


app.include_router(health_router, prefix="", tags=["health"])
app.include_router(webhook_router, prefix="", tags=["webhook"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
