"""Library arrival announcements and adjudication notices."""

import asyncio
import logging

from posthog import Posthog

from core.exceptions import NotificationDeliveryError, NyaMediaError
from core.sentry import capture_exception
from core.telemetry import capture_event
from dialogue.transport import ChatTransport
from ledger.models import RequestView
from notifications.models import LIBRARY_NEW_EVENT, WebhookPayload

logger = logging.getLogger(__name__)


def adjudication_text(request: RequestView) -> str:
    return f"您请求的《{request.display_title}》状态已更新：{request.status.label}"


class NotificationDispatcher:
    """Fans out arrival announcements at most once per series per process.

    The set of announced series lives in memory only and is empty after a
    restart. ``_lock`` guards the check-and-insert on that set and is never
    held while messages are sent.
    """

    def __init__(
        self,
        transport: ChatTransport,
        audience: list[int] | None = None,
        timeout: float = 10.0,
        posthog_client: Posthog | None = None,
    ):
        self.transport = transport
        self.audience = list(audience or [])
        self.timeout = timeout
        self.posthog_client = posthog_client
        self._announced: set[str] = set()

    def _claim(self, series_id: str) -> bool:
        # Check and insert with no await in between.
        if series_id in self._announced:
            return False
        self._announced.add(series_id)
        return True

    def was_announced(self, series_id: str) -> bool:
        return series_id in self._announced

    async def on_library_arrival(self, series_id: str, text: str) -> bool:
        """Announce ``text`` to the audience unless ``series_id`` was already announced.

        Returns True when this call performed the fan-out.
        """
        if not self._claim(series_id):
            logger.debug(f"Series {series_id} already announced, skipping")
            return False

        delivered = 0
        for chat_id in self.audience:
            try:
                await self._deliver(chat_id, text)
                delivered += 1
            except NotificationDeliveryError as e:
                logger.warning(f"Arrival announcement for {series_id} not delivered: {e}")

        logger.info(f"Announced series {series_id} to {delivered}/{len(self.audience)} chats")
        capture_event(
            self.posthog_client,
            "library_arrival_notified",
            {"audience": len(self.audience), "delivered": delivered},
        )
        return True

    async def handle_event(self, payload: WebhookPayload) -> bool:
        """Dispatch a webhook event. Only library arrivals with an item do anything."""
        if payload.event != LIBRARY_NEW_EVENT:
            logger.debug(f"Ignoring webhook event '{payload.event}'")
            return False
        if payload.item is None or payload.item.dedup_key is None:
            logger.info("Library arrival event without item details, ignoring")
            return False
        return await self.on_library_arrival(payload.item.dedup_key, payload.item.announcement())

    async def notify_requester(self, request: RequestView) -> None:
        """Tell the requester their request was adjudicated.

        Raises:
            NotificationDeliveryError: If the message could not be delivered.
        """
        try:
            await self._deliver(request.request_user, adjudication_text(request))
        except NotificationDeliveryError as e:
            capture_exception(e, {"request_id": request.id, "chat_id": request.request_user})
            raise

    async def _deliver(self, chat_id: int, text: str) -> None:
        try:
            await asyncio.wait_for(self.transport.send_message(chat_id, text), self.timeout)
        except TimeoutError as e:
            raise NotificationDeliveryError(
                f"Sending to chat {chat_id} timed out", chat_id=chat_id
            ) from e
        except NyaMediaError as e:
            raise NotificationDeliveryError(
                f"Sending to chat {chat_id} failed: {e.message}",
                chat_id=chat_id,
                details=e.details,
            ) from e
