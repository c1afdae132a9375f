"""Per-chat dialogue states and the in-memory store that holds them.

States are process-scoped: nothing here is persisted, and a restart returns
every conversation to ``Start``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from catalog.models import CatalogSource, MediaInfo, MediaKind, source_tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class AwaitingUsername:
    pass


@dataclass(frozen=True)
class AwaitingCatalogSource:
    pass


@dataclass(frozen=True)
class AwaitingMediaType:
    source: CatalogSource


@dataclass(frozen=True)
class AwaitingMediaId:
    source: CatalogSource
    kind: MediaKind


@dataclass(frozen=True)
class AwaitingConfirmation:
    source: CatalogSource
    kind: MediaKind
    media_id: str
    info: MediaInfo

    @property
    def tag(self) -> str:
        return source_tag(self.source, self.kind)


@dataclass(frozen=True)
class AwaitingDeleteConfirmation:
    pass


DialogueState = (
    Start
    | AwaitingUsername
    | AwaitingCatalogSource
    | AwaitingMediaType
    | AwaitingMediaId
    | AwaitingConfirmation
    | AwaitingDeleteConfirmation
)

START = Start()


@dataclass
class Session:
    """Mutable view of one chat's state, valid while its lock is held."""

    chat_id: int
    state: DialogueState


class DialogueStore:
    """Dialogue states keyed by chat id, with exclusive access per chat.

    ``session()`` holds the chat's lock for the whole transition, so updates
    from one chat apply in arrival order while other chats proceed. A chat's
    lock is dropped once no session holds or awaits it and the chat is back
    in ``Start``.
    """

    def __init__(self):
        self._states: dict[int, DialogueState] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def session(self, chat_id: int) -> AsyncIterator[Session]:
        # Lock table updates never span an await.
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        self._users[chat_id] = self._users.get(chat_id, 0) + 1
        try:
            async with lock:
                session = Session(chat_id=chat_id, state=self._states.get(chat_id, START))
                try:
                    yield session
                finally:
                    if isinstance(session.state, Start):
                        self._states.pop(chat_id, None)
                    else:
                        self._states[chat_id] = session.state
        finally:
            remaining = self._users.pop(chat_id, 1) - 1
            if remaining:
                self._users[chat_id] = remaining
            elif chat_id not in self._states:
                self._locks.pop(chat_id, None)

    def peek(self, chat_id: int) -> DialogueState:
        """Current state without taking the chat's lock."""
        return self._states.get(chat_id, START)

    def active_chats(self) -> int:
        return len(self._states)

    def tracked_locks(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        self._states.clear()
        self._locks.clear()
        self._users.clear()
