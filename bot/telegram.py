"""python-telegram-bot adapter: inbound updates to intents, outbound transport."""

import asyncio
import io
import logging
from collections.abc import Awaitable
from typing import TypeVar

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, InputFile, Update
from telegram.constants import ChatType
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, TypeHandler

from core.exceptions import ExternalServiceError, ServiceInitializationError
from core.sentry import add_breadcrumb
from dialogue.engine import DialogueEngine
from dialogue.intents import Choice, Inbound, NonText, parse_text
from dialogue.transport import ButtonRows

logger = logging.getLogger(__name__)

TELEGRAM_TAG = "Telegram"
ENGINE_KEY = "dialogue_engine"

T = TypeVar("T")


class TelegramTransport:
    """``ChatTransport`` backed by a python-telegram-bot ``Bot``.

    Every call is bounded by ``timeout``; Telegram errors and timeouts become
    ``ExternalServiceError``.
    """

    def __init__(self, bot, timeout: float = 10.0):
        self.bot = bot
        self.timeout = timeout

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        add_breadcrumb("telegram", operation)
        try:
            return await asyncio.wait_for(call, self.timeout)
        except TimeoutError as e:
            logger.error(f"Telegram {operation} timed out")
            raise ExternalServiceError(f"Telegram {operation} timed out", tag=TELEGRAM_TAG) from e
        except TelegramError as e:
            logger.warning(f"Telegram {operation} failed: {e}")
            raise ExternalServiceError(
                f"Telegram {operation} failed: {e}", tag=TELEGRAM_TAG, details={"error": str(e)}
            ) from e

    async def send_message(
        self, chat_id: int, text: str, buttons: ButtonRows | None = None
    ) -> int | None:
        reply_markup = None
        if buttons:
            reply_markup = InlineKeyboardMarkup(
                [
                    [InlineKeyboardButton(button.label, callback_data=button.data) for button in row]
                    for row in buttons
                ]
            )
        message = await self._call(
            "send_message",
            self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup),
        )
        return message.message_id

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._call(
            "delete_message", self.bot.delete_message(chat_id=chat_id, message_id=message_id)
        )

    async def send_document(
        self, chat_id: int, filename: str, content: bytes, caption: str | None = None
    ) -> None:
        await self._call(
            "send_document",
            self.bot.send_document(
                chat_id=chat_id,
                document=InputFile(io.BytesIO(content), filename=filename),
                caption=caption,
            ),
        )

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        await self._call(
            "answer_callback",
            self.bot.answer_callback_query(callback_query_id=callback_id, text=text),
        )


def inbound_from_update(update: Update) -> Inbound | None:
    """Convert an update into an engine input. Returns None for updates the bot ignores."""
    query = update.callback_query
    if query is not None:
        if query.message is None or query.data is None:
            return None
        chat = query.message.chat
        return Inbound(
            chat_id=chat.id,
            user_id=query.from_user.id,
            is_private=chat.type == ChatType.PRIVATE,
            message_id=query.message.message_id,
            callback_id=query.id,
            intent=Choice(query.data),
        )

    message = update.message
    if message is None or message.from_user is None:
        return None
    return Inbound(
        chat_id=message.chat.id,
        user_id=message.from_user.id,
        is_private=message.chat.type == ChatType.PRIVATE,
        message_id=message.message_id,
        intent=NonText() if message.text is None else parse_text(message.text),
    )


async def handle_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    inbound = inbound_from_update(update)
    if inbound is None:
        return
    engine: DialogueEngine = context.application.bot_data[ENGINE_KEY]
    await engine.handle(inbound)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error(f"Unhandled error while processing update {update}: {context.error}")


def build_application(token: str) -> Application:
    """Build the bot application; updates of different chats run concurrently."""
    return Application.builder().token(token).concurrent_updates(True).build()


def attach_engine(application: Application, engine: DialogueEngine) -> None:
    application.bot_data[ENGINE_KEY] = engine
    application.add_handler(TypeHandler(Update, handle_update))
    application.add_error_handler(handle_error)


async def start_bot(application: Application) -> None:
    await application.initialize()
    await application.start()
    if application.updater is None:
        raise ServiceInitializationError("Telegram application was built without an updater")
    await application.updater.start_polling(drop_pending_updates=True)
    logger.info("Telegram bot polling started")


async def stop_bot(application: Application) -> None:
    if application.updater is not None and application.updater.running:
        await application.updater.stop()
    if application.running:
        await application.stop()
    await application.shutdown()
    logger.info("Telegram bot stopped")
