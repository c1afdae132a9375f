"""Inbound chat updates reduced to a closed set of intents."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Command:
    """A ``/command``; ``name`` is lower-case without the slash or ``@botname``."""

    name: str
    args: str = ""


@dataclass(frozen=True)
class Choice:
    """An inline button press carrying the button's callback data."""

    data: str


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class NonText:
    """A message without text, such as a sticker or a photo."""


Intent = Command | Choice | Text | NonText


@dataclass(frozen=True)
class Inbound:
    """One update addressed to the dialogue engine."""

    chat_id: int
    user_id: int
    intent: Intent
    is_private: bool = True
    message_id: int | None = None
    callback_id: str | None = None


def parse_text(text: str) -> Command | Text:
    """Classify a text message as a command or free text."""
    stripped = text.strip()
    if not stripped.startswith("/") or len(stripped) == 1:
        return Text(stripped)
    head, _, args = stripped[1:].partition(" ")
    name = head.split("@", 1)[0].lower()
    return Command(name=name, args=args.strip())
