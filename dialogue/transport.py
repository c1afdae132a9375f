"""Outbound chat operations the dialogue engine and dispatcher depend on."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Button:
    """An inline button; ``data`` comes back as a ``Choice`` intent when pressed."""

    label: str
    data: str


ButtonRows = list[list[Button]]


class ChatTransport(Protocol):
    """Implemented by ``bot.telegram.TelegramTransport`` and by test fakes.

    Implementations raise ``ExternalServiceError`` when the chat service fails
    or times out.
    """

    async def send_message(
        self, chat_id: int, text: str, buttons: ButtonRows | None = None
    ) -> int | None:
        """Send a message and return its message id when known."""
        ...

    async def delete_message(self, chat_id: int, message_id: int) -> None: ...

    async def send_document(
        self, chat_id: int, filename: str, content: bytes, caption: str | None = None
    ) -> None: ...

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None: ...
