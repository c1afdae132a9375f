"""Dialogue engine: the per-chat state machine behind every bot command.

Each step handler receives the chat's current state and the inbound intent and
returns a ``StepOutcome`` naming the next state, the replies and, on failure,
which kind of failure happened. The engine picks the user-visible error text
from that kind, so no exception from a collaborator reaches the transport.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from posthog import Posthog

from accounts.directory import UserDirectory
from accounts.emby import EMBY_TAG, EmbyClient
from catalog.models import CatalogSource, MediaKind, catalog_url
from catalog.service import CatalogService
from core.exceptions import (
    DuplicateRequestError,
    ExternalServiceError,
    NyaMediaError,
    PersistenceError,
)
from core.sentry import capture_exception
from core.telemetry import RequestTelemetry, capture_event, report_telemetry
from dialogue import messages
from dialogue.intents import Choice, Command, Inbound, NonText, Text
from dialogue.state import (
    START,
    AwaitingCatalogSource,
    AwaitingConfirmation,
    AwaitingDeleteConfirmation,
    AwaitingMediaId,
    AwaitingMediaType,
    AwaitingUsername,
    DialogueState,
    DialogueStore,
    Start,
)
from dialogue.transport import Button, ButtonRows, ChatTransport
from ledger.service import RequestLedger

logger = logging.getLogger(__name__)

SOURCE_PREFIX = "source:"
KIND_PREFIX = "kind:"
CONFIRM_PREFIX = "confirm:"
CANCEL_DATA = "cancel"
REQUEST_LIST_FILENAME = "requests.csv"


class OutcomeKind(StrEnum):
    OK = "ok"
    USER_INPUT = "user_input"
    DUPLICATE = "duplicate"
    EXTERNAL = "external"
    PERSISTENCE = "persistence"
    INTERNAL = "internal"


@dataclass
class Reply:
    text: str
    buttons: ButtonRows | None = None
    # Deleted together with the triggering message after the transient delay.
    transient: bool = False


@dataclass
class Document:
    filename: str
    content: bytes
    caption: str | None = None


@dataclass
class StepOutcome:
    """Result of one dialogue step."""

    kind: OutcomeKind
    state: DialogueState
    replies: list[Reply] = field(default_factory=list)
    error: Exception | None = None
    document: Document | None = None
    prefix: str | None = None
    suffix: str | None = None
    cleanup: bool = False

    @classmethod
    def ok(cls, state: DialogueState, *replies: Reply, **kwargs) -> "StepOutcome":
        return cls(OutcomeKind.OK, state, list(replies), **kwargs)

    @classmethod
    def rejected(cls, state: DialogueState, *replies: Reply) -> "StepOutcome":
        return cls(OutcomeKind.USER_INPUT, state, list(replies))

    @classmethod
    def failed(
        cls, kind: OutcomeKind, state: DialogueState, error: Exception | None, **kwargs
    ) -> "StepOutcome":
        return cls(kind, state, error=error, **kwargs)


StepHandler = Callable[[DialogueState, Inbound], Awaitable[StepOutcome]]
# Called with the state and intent whose types key the transition table.
TransitionHandler = Callable[[Any, Any, Inbound], Awaitable[StepOutcome]]


@dataclass(frozen=True)
class CommandSpec:
    handler: StepHandler
    private_only: bool = False
    admin_only: bool = False


class DialogueEngine:
    """Routes inbound intents through per-chat dialogue states."""

    def __init__(
        self,
        transport: ChatTransport,
        directory: UserDirectory,
        ledger: RequestLedger,
        catalog: CatalogService | None = None,
        emby: EmbyClient | None = None,
        store: DialogueStore | None = None,
        disabled_users: list[int] | None = None,
        transient_ttl: float = 5.0,
        posthog_client: Posthog | None = None,
    ):
        self.transport = transport
        self.directory = directory
        self.ledger = ledger
        self.catalog = catalog
        self.emby = emby
        self.store = store or DialogueStore()
        self.disabled_users = set(disabled_users or [])
        self.transient_ttl = transient_ttl
        self.posthog_client = posthog_client
        self._background: set[asyncio.Task] = set()

        self._commands: dict[str, CommandSpec] = {
            "help": CommandSpec(self._cmd_help),
            "start": CommandSpec(self._cmd_help),
            "checkin": CommandSpec(self._cmd_checkin),
            "checkout": CommandSpec(self._cmd_checkin),
            "chatid": CommandSpec(self._cmd_chat_id, admin_only=True),
            "register": CommandSpec(self._cmd_register, private_only=True),
            "resetpassword": CommandSpec(self._cmd_reset_password, private_only=True),
            "deleteuser": CommandSpec(self._cmd_delete_user, private_only=True),
            "request": CommandSpec(self._cmd_request, private_only=True),
            "cancel": CommandSpec(self._cmd_cancel),
            "requestlist": CommandSpec(self._cmd_request_list, private_only=True, admin_only=True),
        }
        self._transitions: dict[tuple[type, type], TransitionHandler] = {
            (AwaitingUsername, Text): self._on_username,
            (AwaitingUsername, NonText): self._on_username_rejected,
            (AwaitingUsername, Command): self._on_username_command,
            (AwaitingCatalogSource, Choice): self._on_source,
            (AwaitingMediaType, Choice): self._on_kind,
            (AwaitingMediaId, Text): self._on_media_id,
            (AwaitingMediaId, NonText): self._on_media_id_rejected,
            (AwaitingConfirmation, Choice): self._on_confirmation,
            (AwaitingDeleteConfirmation, Text): self._on_delete_confirmation,
            (AwaitingDeleteConfirmation, Command): self._on_delete_abandoned,
            (AwaitingDeleteConfirmation, Choice): self._on_delete_abandoned,
            (AwaitingDeleteConfirmation, NonText): self._on_delete_abandoned,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._commands)

    async def handle(self, inbound: Inbound) -> StepOutcome:
        """Apply one inbound update to its chat's dialogue and send the replies."""
        async with self.store.session(inbound.chat_id) as session:
            outcome = await self._step(session.state, inbound)
            session.state = outcome.state
            await self._render(inbound, outcome)
        return outcome

    async def _step(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        intent = inbound.intent
        try:
            if inbound.user_id in self.disabled_users:
                if isinstance(intent, Command):
                    return self._refuse(state)
                return StepOutcome.ok(state)

            if isinstance(intent, Command):
                spec = self._commands.get(intent.name)
                if spec is not None:
                    return await self._run_command(spec, state, inbound)

            transition = self._transitions.get((type(state), type(intent)))
            if transition is not None:
                return await transition(state, intent, inbound)
            return await self._unhandled(state, inbound)
        except PersistenceError as e:
            logger.error(f"Database error in chat {inbound.chat_id}: {e}")
            return StepOutcome.failed(OutcomeKind.PERSISTENCE, START, e)
        except Exception as e:
            logger.exception(f"Unexpected error handling update for chat {inbound.chat_id}: {e}")
            capture_exception(
                e, {"chat_id": inbound.chat_id, "state": type(state).__name__}, "dialogue"
            )
            return StepOutcome.failed(OutcomeKind.INTERNAL, START, e)

    async def _run_command(
        self, spec: CommandSpec, state: DialogueState, inbound: Inbound
    ) -> StepOutcome:
        if spec.private_only and not inbound.is_private:
            return StepOutcome.rejected(state, Reply(messages.PRIVATE_ONLY, transient=True))
        if spec.admin_only and not await self.directory.is_admin(inbound.user_id):
            logger.info(f"User {inbound.user_id} refused admin command {inbound.intent}")
            return self._refuse(state)
        return await spec.handler(state, inbound)

    def _refuse(self, state: DialogueState) -> StepOutcome:
        return StepOutcome.rejected(state, Reply(messages.NO_PERMISSION, transient=True))

    # Rendering

    def _error_text(self, outcome: StepOutcome) -> str | None:
        if outcome.kind == OutcomeKind.EXTERNAL and isinstance(outcome.error, ExternalServiceError):
            body = messages.external_failure(outcome.error)
        elif outcome.kind in (OutcomeKind.PERSISTENCE, OutcomeKind.INTERNAL):
            body = messages.INTERNAL_ERROR
        elif outcome.kind == OutcomeKind.DUPLICATE:
            body = messages.ALREADY_REQUESTED
        else:
            return None
        return "\n".join(part for part in (outcome.prefix, body, outcome.suffix) if part)

    async def _render(self, inbound: Inbound, outcome: StepOutcome) -> None:
        replies = list(outcome.replies)
        error_text = self._error_text(outcome)
        if error_text:
            replies.insert(0, Reply(error_text))

        if inbound.callback_id:
            try:
                await self.transport.answer_callback(inbound.callback_id)
            except NyaMediaError as e:
                logger.debug(f"Could not answer callback {inbound.callback_id}: {e}")

        transient_ids: list[int] = []
        for reply in replies:
            message_id = await self._send(inbound.chat_id, reply.text, reply.buttons)
            if reply.transient and message_id is not None:
                transient_ids.append(message_id)

        if outcome.document is not None:
            doc = outcome.document
            try:
                await self.transport.send_document(
                    inbound.chat_id, doc.filename, doc.content, doc.caption
                )
            except NyaMediaError as e:
                logger.warning(f"Failed to send {doc.filename} to chat {inbound.chat_id}: {e}")

        cleanup = outcome.cleanup or any(reply.transient for reply in replies)
        if cleanup and inbound.message_id is not None and inbound.callback_id is None:
            transient_ids.append(inbound.message_id)
        if transient_ids:
            self._schedule_deletion(inbound.chat_id, transient_ids)

    async def _send(self, chat_id: int, text: str, buttons: ButtonRows | None = None) -> int | None:
        try:
            return await self.transport.send_message(chat_id, text, buttons)
        except NyaMediaError as e:
            logger.warning(f"Failed to send message to chat {chat_id}: {e}")
            return None

    def _schedule_deletion(self, chat_id: int, message_ids: list[int]) -> None:
        task = asyncio.create_task(self._delete_later(chat_id, message_ids))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _delete_later(self, chat_id: int, message_ids: list[int]) -> None:
        await asyncio.sleep(self.transient_ttl)
        for message_id in message_ids:
            try:
                await self.transport.delete_message(chat_id, message_id)
            except NyaMediaError as e:
                logger.debug(f"Could not delete message {message_id} in chat {chat_id}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled message deletions to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending message deletions."""
        for task in list(self._background):
            task.cancel()
        await self.drain()

    # Single-shot commands

    async def _cmd_help(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        if not inbound.is_private:
            return StepOutcome.ok(state, Reply(messages.HELP_GROUP, transient=True))
        return StepOutcome.ok(state, Reply(messages.HELP))

    async def _cmd_checkin(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        if not inbound.is_private:
            return StepOutcome.ok(state, cleanup=True)
        return StepOutcome.ok(state, Reply(messages.CHECKIN, transient=True))

    async def _cmd_chat_id(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        return StepOutcome.ok(state, Reply(messages.chat_id_text(inbound.chat_id)))

    async def _cmd_cancel(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        return StepOutcome.ok(START, Reply(messages.CANCELLED))

    async def _cmd_reset_password(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        registration = await self.directory.get(inbound.user_id)
        if registration is None or not registration.emby_user_id:
            return StepOutcome.rejected(state, Reply(messages.NOT_REGISTERED))
        if self.emby is None:
            return self._emby_unavailable(state)

        try:
            await self.emby.reset_password(registration.emby_user_id)
        except ExternalServiceError as e:
            logger.warning(f"Password reset failed for {inbound.user_id}: {e}")
            return StepOutcome.failed(OutcomeKind.EXTERNAL, state, e)
        return StepOutcome.ok(state, Reply(messages.PASSWORD_RESET))

    async def _cmd_request_list(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        content = await self.ledger.export_csv()
        return StepOutcome.ok(
            state,
            document=Document(REQUEST_LIST_FILENAME, content, messages.REQUEST_LIST_CAPTION),
        )

    def _emby_unavailable(self, state: DialogueState, **kwargs) -> StepOutcome:
        error = ExternalServiceError("Emby is not configured", tag=EMBY_TAG)
        return StepOutcome.failed(OutcomeKind.EXTERNAL, state, error, **kwargs)

    # Registration

    async def _cmd_register(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        if await self.directory.is_registered(inbound.user_id):
            return StepOutcome.ok(START, Reply(messages.ALREADY_REGISTERED))
        return StepOutcome.ok(AwaitingUsername(), Reply(messages.ASK_USERNAME))

    async def _on_username_command(
        self, state: AwaitingUsername, intent: Command, inbound: Inbound
    ) -> StepOutcome:
        return StepOutcome.rejected(state, Reply(messages.USERNAME_SLASH))

    async def _on_username_rejected(
        self, state: AwaitingUsername, intent: NonText, inbound: Inbound
    ) -> StepOutcome:
        return StepOutcome.rejected(state, Reply(messages.USERNAME_INVALID))

    async def _on_username(
        self, state: AwaitingUsername, intent: Text, inbound: Inbound
    ) -> StepOutcome:
        username = intent.text.strip()
        if username.startswith("/"):
            return StepOutcome.rejected(state, Reply(messages.USERNAME_SLASH))
        if not username or "\n" in username:
            return StepOutcome.rejected(state, Reply(messages.USERNAME_INVALID))

        framing = {"prefix": messages.REGISTER_FAILED, "suffix": messages.REGISTER_RESTART}
        if self.emby is None:
            return self._emby_unavailable(START, **framing)

        telemetry = RequestTelemetry()
        try:
            with telemetry.track_step("provision"):
                telemetry.record_api_call("emby")
                emby_user_id = await self.emby.create_user(username)
        except ExternalServiceError as e:
            logger.warning(f"Provisioning '{username}' for {inbound.user_id} failed: {e}")
            return StepOutcome.failed(OutcomeKind.EXTERNAL, START, e, **framing)

        try:
            with telemetry.track_step("persist"):
                await self.directory.register(inbound.user_id, username, emby_user_id)
        except PersistenceError as e:
            logger.error(f"Could not store registration of {inbound.user_id}: {e}")
            await self._revoke_orphan(self.emby, emby_user_id)
            return StepOutcome.failed(OutcomeKind.PERSISTENCE, START, e)

        report_telemetry(self.posthog_client, telemetry, "registration_completed")
        return StepOutcome.ok(START, Reply(messages.REGISTERED))

    async def _revoke_orphan(self, emby: EmbyClient, emby_user_id: str) -> None:
        try:
            await emby.delete_user(emby_user_id)
            logger.info(f"Revoked Emby user {emby_user_id} after failed registration")
        except ExternalServiceError as e:
            logger.error(f"Orphaned Emby user {emby_user_id} could not be revoked: {e}")
            capture_exception(e, {"emby_user_id": emby_user_id}, "dialogue")

    # Account deletion

    async def _cmd_delete_user(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        if not await self.directory.is_registered(inbound.user_id):
            return StepOutcome.rejected(START, Reply(messages.NOT_REGISTERED))
        return StepOutcome.ok(AwaitingDeleteConfirmation(), Reply(messages.ASK_DELETE_CONFIRMATION))

    async def _on_delete_abandoned(
        self, state: AwaitingDeleteConfirmation, intent: Any, inbound: Inbound
    ) -> StepOutcome:
        return StepOutcome.rejected(START, Reply(messages.CANCELLED))

    async def _on_delete_confirmation(
        self, state: AwaitingDeleteConfirmation, intent: Text, inbound: Inbound
    ) -> StepOutcome:
        if intent.text.strip().lower() != messages.DELETE_CONFIRM_TOKEN:
            return StepOutcome.rejected(START, Reply(messages.CANCELLED))

        registration = await self.directory.get(inbound.user_id)
        if registration is None:
            return StepOutcome.rejected(START, Reply(messages.NOT_REGISTERED))

        if registration.emby_user_id:
            if self.emby is None:
                return self._emby_unavailable(START)
            try:
                await self.emby.delete_user(registration.emby_user_id)
            except ExternalServiceError as e:
                # The registration row stays: it is the only record of the live account.
                logger.warning(f"Revoking Emby user {registration.emby_user_id} failed: {e}")
                return StepOutcome.failed(OutcomeKind.EXTERNAL, START, e)

        await self.directory.delete(inbound.user_id)
        capture_event(self.posthog_client, "account_deleted")
        return StepOutcome.ok(START, Reply(messages.ACCOUNT_DELETED))

    # Media requests

    async def _cmd_request(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        buttons = [[Button(source.value, SOURCE_PREFIX + source.value) for source in CatalogSource]]
        return StepOutcome.ok(AwaitingCatalogSource(), Reply(messages.ASK_SOURCE, buttons))

    async def _on_source(
        self, state: AwaitingCatalogSource, intent: Choice, inbound: Inbound
    ) -> StepOutcome:
        try:
            source = CatalogSource(intent.data.removeprefix(SOURCE_PREFIX))
        except ValueError:
            return StepOutcome.rejected(state, Reply(messages.INVALID_SOURCE, transient=True))

        buttons = [[Button(kind.value, KIND_PREFIX + kind.value) for kind in MediaKind]]
        return StepOutcome.ok(AwaitingMediaType(source), Reply(messages.ASK_KIND, buttons))

    async def _on_kind(
        self, state: AwaitingMediaType, intent: Choice, inbound: Inbound
    ) -> StepOutcome:
        try:
            kind = MediaKind(intent.data.removeprefix(KIND_PREFIX))
        except ValueError:
            return StepOutcome.rejected(state, Reply(messages.INVALID_KIND, transient=True))

        return StepOutcome.ok(
            AwaitingMediaId(state.source, kind),
            Reply(messages.ask_media_id(state.source.value, kind.value)),
        )

    async def _on_media_id_rejected(
        self, state: AwaitingMediaId, intent: NonText, inbound: Inbound
    ) -> StepOutcome:
        return StepOutcome.rejected(state, Reply(messages.MEDIA_ID_NOT_NUMERIC))

    async def _on_media_id(
        self, state: AwaitingMediaId, intent: Text, inbound: Inbound
    ) -> StepOutcome:
        text = intent.text.strip()
        if not (text.isascii() and text.isdigit()):
            return StepOutcome.rejected(state, Reply(messages.MEDIA_ID_NOT_NUMERIC))
        media_id = str(int(text))

        if self.catalog is None:
            error = ExternalServiceError("No metadata catalog configured", tag="Catalog")
            return StepOutcome.failed(
                OutcomeKind.EXTERNAL, START, error, prefix=messages.METADATA_FAILED
            )
        try:
            info = await self.catalog.fetch(state.source, state.kind, media_id)
        except ExternalServiceError as e:
            logger.warning(f"Metadata fetch for {state.source} {media_id} failed: {e}")
            return StepOutcome.failed(
                OutcomeKind.EXTERNAL, START, e, prefix=messages.METADATA_FAILED
            )

        pending = AwaitingConfirmation(state.source, state.kind, media_id, info)
        buttons = [
            [
                Button(messages.CONFIRM_BUTTON, f"{CONFIRM_PREFIX}{pending.tag}:{media_id}"),
                Button(messages.CANCEL_BUTTON, CANCEL_DATA),
            ]
        ]
        card = messages.confirmation_card(
            info.title, info.summary, catalog_url(state.source, state.kind, media_id)
        )
        return StepOutcome.ok(pending, Reply(card, buttons))

    async def _on_confirmation(
        self, state: AwaitingConfirmation, intent: Choice, inbound: Inbound
    ) -> StepOutcome:
        data = intent.data
        if data == CANCEL_DATA:
            return StepOutcome.ok(START, Reply(messages.CANCELLED))
        if data != f"{CONFIRM_PREFIX}{state.tag}:{state.media_id}":
            return await self._stale_choice(state, intent)

        try:
            await self.ledger.submit(state.tag, state.media_id, inbound.user_id, state.info)
        except DuplicateRequestError as e:
            return StepOutcome.failed(OutcomeKind.DUPLICATE, START, e)
        return StepOutcome.ok(START, Reply(messages.REQUEST_SUBMITTED))

    # Fallbacks

    async def _stale_choice(self, state: DialogueState, choice: Choice) -> StepOutcome:
        """A button from an earlier card was pressed."""
        data = choice.data
        if not data.startswith(CONFIRM_PREFIX):
            return StepOutcome.rejected(state, Reply(messages.CHOICE_EXPIRED, transient=True))

        tag, _, media_id = data.removeprefix(CONFIRM_PREFIX).rpartition(":")
        if tag and media_id and await self.ledger.find(tag, media_id) is not None:
            return StepOutcome.failed(OutcomeKind.DUPLICATE, state, None)
        return StepOutcome.rejected(state, Reply(messages.CONFIRMATION_EXPIRED))

    async def _unhandled(self, state: DialogueState, inbound: Inbound) -> StepOutcome:
        intent = inbound.intent
        if isinstance(intent, Choice):
            return await self._stale_choice(state, intent)
        if not inbound.is_private:
            # The bot sees every group message when it is a group admin.
            return StepOutcome.ok(state)
        if isinstance(state, Start) and isinstance(intent, NonText):
            return StepOutcome.ok(state)
        if isinstance(state, Start) or isinstance(intent, Command):
            return StepOutcome.rejected(state, Reply(messages.INVALID_COMMAND))
        return StepOutcome.rejected(state, Reply(messages.USE_BUTTONS))
