"""FastAPI dependency injection providers and process-wide service lifecycle."""

import logging

from fastapi import Depends
from posthog import Posthog
from telegram.ext import Application

from accounts.directory import UserDirectory
from accounts.emby import EmbyClient
from bot.telegram import (
    TelegramTransport,
    attach_engine,
    build_application,
    start_bot,
    stop_bot,
)
from catalog.service import CatalogService
from config.settings import Settings, get_settings
from core.exceptions import ServiceInitializationError
from dialogue.engine import DialogueEngine
from dialogue.transport import ChatTransport
from ledger.repository import RequestRepository
from ledger.service import RequestLedger
from notifications.dispatcher import NotificationDispatcher
from storage.db import Database

logger = logging.getLogger(__name__)

# Module-level instances for lifecycle management
_database: Database | None = None
_emby_client: EmbyClient | None = None
_catalog_service: CatalogService | None = None
_dispatcher: NotificationDispatcher | None = None
_request_ledger: RequestLedger | None = None
_posthog_client: Posthog | None = None
_chat_transport: ChatTransport | None = None
_dialogue_engine: DialogueEngine | None = None
_telegram_app: Application | None = None


async def get_database(settings: Settings = Depends(get_settings)) -> Database:
    """Get the connected database, creating tables on first use.

    Raises:
        ServiceInitializationError: If the database cannot be opened
    """
    global _database

    if _database is None:
        db_path = settings.resolved_database_path
        database = Database(db_path=db_path)
        try:
            await database.connect()
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise ServiceInitializationError(f"Database initialization failed: {e}") from e
        _database = database

    return _database


async def close_database() -> None:
    """Close database connection."""
    global _database
    if _database:
        await _database.close()
        _database = None


async def get_user_directory(
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_database),
) -> UserDirectory:
    return UserDirectory(db, admin_ids=settings.admin_chat_ids)


def get_emby_client(settings: Settings = Depends(get_settings)) -> EmbyClient | None:
    """Get the Emby client if EMBY_URL and EMBY_TOKEN are set."""
    global _emby_client

    if not settings.emby_configured:
        logger.debug("EMBY_URL/EMBY_TOKEN not set - account provisioning disabled")
        return None

    if _emby_client is None:
        assert settings.emby_url is not None and settings.emby_token is not None
        _emby_client = EmbyClient(
            settings.emby_url,
            settings.emby_token,
            copy_from_user_id=settings.emby_copy_from_user_id,
            timeout=settings.external_timeout,
        )
        logger.info(f"Emby client initialized ({settings.emby_url})")

    return _emby_client


def get_catalog_service(settings: Settings = Depends(get_settings)) -> CatalogService | None:
    """Get the metadata catalog service if at least one catalog token is set."""
    global _catalog_service

    if not (settings.tmdb_access_token or settings.bgm_access_token):
        logger.debug("No catalog tokens set - metadata lookups disabled")
        return None

    if _catalog_service is None:
        _catalog_service = CatalogService(
            tmdb_token=settings.tmdb_access_token,
            bgm_token=settings.bgm_access_token,
            language=settings.catalog_language,
            timeout=settings.external_timeout,
            cache_ttl=settings.catalog_cache_ttl,
            cache_maxsize=settings.catalog_cache_maxsize,
            rate_limit=settings.catalog_rate_limit,
            max_concurrent=settings.catalog_max_concurrent,
        )
        logger.info(
            f"Catalog service initialized (sources: {', '.join(_catalog_service.configured_sources)})"
        )

    return _catalog_service


def get_posthog_client(settings: Settings = Depends(get_settings)) -> Posthog | None:
    """Get PostHog client instance.

    Args:
        settings: Application settings

    Returns:
        Optional[Posthog]: PostHog client if configured and enabled, None otherwise
    """
    global _posthog_client

    if not settings.enable_telemetry:
        logger.debug("Telemetry disabled")
        return None

    if not settings.posthog_api_key:
        logger.debug("POSTHOG_API_KEY not set - telemetry disabled")
        return None

    if _posthog_client is None:
        _posthog_client = Posthog(
            project_api_key=settings.posthog_api_key,
            host=settings.posthog_host,
        )
        logger.info(f"PostHog client initialized (host: {settings.posthog_host})")

    return _posthog_client


def get_dispatcher(
    settings: Settings = Depends(get_settings),
    posthog_client: Posthog | None = Depends(get_posthog_client),
) -> NotificationDispatcher | None:
    """Get the notification dispatcher, or None while no chat transport is running."""
    global _dispatcher

    if _chat_transport is None:
        return None

    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(
            _chat_transport,
            audience=settings.webhook_notify_chats,
            timeout=settings.external_timeout,
            posthog_client=posthog_client,
        )
        logger.info(f"Notification dispatcher ready ({len(settings.webhook_notify_chats)} chats)")

    return _dispatcher


async def get_request_ledger(
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_database),
    catalog: CatalogService | None = Depends(get_catalog_service),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
    posthog_client: Posthog | None = Depends(get_posthog_client),
) -> RequestLedger:
    global _request_ledger

    if _request_ledger is None:
        _request_ledger = RequestLedger(
            RequestRepository(db),
            catalog=catalog,
            notifier=dispatcher,
            batch_delay=settings.metadata_batch_delay,
            posthog_client=posthog_client,
        )
    elif _request_ledger.notifier is None and dispatcher is not None:
        _request_ledger.notifier = dispatcher

    return _request_ledger


async def start_chat_bot(settings: Settings) -> DialogueEngine | None:
    """Build the dialogue engine and start polling Telegram.

    Returns None when TELEGRAM_BOT_TOKEN is not set.
    """
    global _telegram_app, _chat_transport, _dialogue_engine

    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set - bot and notifications disabled")
        return None

    application = build_application(settings.telegram_bot_token)
    _chat_transport = TelegramTransport(application.bot, timeout=settings.external_timeout)

    db = await get_database(settings)
    posthog_client = get_posthog_client(settings)
    catalog = get_catalog_service(settings)
    dispatcher = get_dispatcher(settings, posthog_client)
    ledger = await get_request_ledger(settings, db, catalog, dispatcher, posthog_client)

    _dialogue_engine = DialogueEngine(
        transport=_chat_transport,
        directory=await get_user_directory(settings, db),
        ledger=ledger,
        catalog=catalog,
        emby=get_emby_client(settings),
        disabled_users=settings.disabled_users,
        transient_ttl=settings.transient_message_ttl,
        posthog_client=posthog_client,
    )
    attach_engine(application, _dialogue_engine)

    try:
        await start_bot(application)
    except Exception as e:
        logger.error(f"Failed to start Telegram bot: {e}")
        raise ServiceInitializationError(f"Telegram bot failed to start: {e}") from e

    _telegram_app = application
    return _dialogue_engine


async def stop_chat_bot() -> None:
    """Stop polling and cancel pending message deletions."""
    global _telegram_app, _chat_transport, _dialogue_engine, _dispatcher

    if _telegram_app is not None:
        await stop_bot(_telegram_app)
        _telegram_app = None
    if _dialogue_engine is not None:
        await _dialogue_engine.close()
        _dialogue_engine = None
    _chat_transport = None
    _dispatcher = None
    if _request_ledger is not None:
        _request_ledger.notifier = None


async def close_clients() -> None:
    """Close outbound HTTP clients and drop the ledger."""
    global _emby_client, _catalog_service, _request_ledger
    if _emby_client:
        await _emby_client.close()
        _emby_client = None
    if _catalog_service:
        await _catalog_service.close()
        _catalog_service = None
    _request_ledger = None


def flush_posthog() -> None:
    """Flush any buffered PostHog events."""
    global _posthog_client
    if _posthog_client:
        _posthog_client.flush()


def shutdown_posthog() -> None:
    """Shutdown PostHog client gracefully."""
    global _posthog_client
    if _posthog_client:
        _posthog_client.shutdown()
        _posthog_client = None
        logger.info("PostHog client shutdown")
