from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING
from uuid import NAMESPACE_URL, uuid5

from loguru import logger

from assistant_chat.conversation.accumulator import MessageAccumulator
from assistant_chat.conversation.errors import NoActiveSessionError, SessionBusyError
from assistant_chat.conversation.events import (
    AssistantText,
    DecodeError,
    ErrorEvent,
    Event,
    PermissionRequested,
    Result,
    SessionEnd,
    SessionStart,
    TextDelta,
    ToolEnd,
    ToolStart,
    Unrecognized,
    decode,
)
from assistant_chat.conversation.ledger import ToolCallLedger
from assistant_chat.conversation.lifecycle import SessionLifecycleTracker
from assistant_chat.conversation.models import (
    ConversationSnapshot,
    ConversationView,
    LifecycleState,
    Message,
    MessageRole,
    PermissionRequest,
    ToolCall,
    new_id,
    utc_now,
)

if TYPE_CHECKING:
    from assistant_chat.transport import ChatTransport

Listener = Callable[[ConversationView], None]


class ConversationStore:
    """Single owner of the conversation state.

    Events enter through ``handle_event`` in arrival order. Commands are
    coroutines; their state changes happen before the first await so that
    events delivered while the transport is busy see a consistent state.
    """

    def __init__(self, transport: ChatTransport, *, max_in_memory_messages: int = 200):
        self._transport = transport
        self._max_in_memory_messages = max_in_memory_messages
        self._tracker = SessionLifecycleTracker()
        self._ledger = ToolCallLedger()
        self._accumulator = MessageAccumulator(self._ledger)
        self._messages: list[Message] = []
        self._archived: list[Message] = []
        self._pending_permission: PermissionRequest | None = None
        self._error: str | None = None
        self._listeners: list[Listener] = []
        self._last_restored: tuple[str, str | None] | None = None
        self._handlers: dict[type, Callable[..., None]] = {
            SessionStart: self._on_session_start,
            TextDelta: self._on_text,
            AssistantText: self._on_text,
            ToolStart: self._on_tool_start,
            ToolEnd: self._on_tool_end,
            PermissionRequested: self._on_permission_request,
            Result: self._on_result,
            ErrorEvent: self._on_error,
            SessionEnd: self._on_session_end,
            Unrecognized: lambda _event: None,
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send(self, content: str) -> str | None:
        self._tracker.begin_turn()
        self._start_turn_buffers()
        self._append(Message.create(MessageRole.USER, content))
        self._publish()

        try:
            session_id = await self._transport.start_turn(content)
        except Exception as ex:
            self._on_transport_failure("start_turn", ex)
            return None

        self._tracker.adopt_session_id(session_id)
        self._publish()
        return session_id

    async def interrupt(self) -> Message | None:
        self._tracker.interrupt()
        message = self._finalize_turn()
        self._publish()

        session_id = self._tracker.session_id
        if session_id is None:
            return message
        try:
            await self._transport.interrupt_turn(session_id)
        except Exception as ex:
            self._on_transport_failure("interrupt_turn", ex)
        return message

    async def continue_chat(self, session_id: str | None = None) -> None:
        target = session_id or self._tracker.session_id
        if target is None:
            raise NoActiveSessionError()
        self._tracker.begin_turn()
        self._tracker.adopt_session_id(target)
        self._start_turn_buffers()
        self._publish()

        try:
            await self._transport.continue_turn(target)
        except Exception as ex:
            self._on_transport_failure("continue_turn", ex)

    def handle_raw(self, raw: str | bytes) -> bool:
        event = decode(raw)
        if isinstance(event, DecodeError):
            logger.warning(f"Dropping malformed event ({event.message}): {event.raw[:200]!r}")
            return False
        return self.handle_event(event)

    def handle_event(self, event: Event) -> bool:
        """Route one decoded event. Returns False when the event was dropped."""
        if not self._tracker.admit(event):
            return False
        try:
            self._handlers[type(event)](event)
        except Exception as ex:
            logger.exception(f"Failed to apply {type(event).__name__}")
            self._fail(f"Internal error while handling {type(event).__name__}: {ex}")
        self._publish()
        return True

    def clear_error(self) -> None:
        if self._error is not None:
            self._error = None
            self._publish()

    def resolve_permission(self) -> PermissionRequest | None:
        request = self._pending_permission
        if request is not None:
            self._pending_permission = None
            self._publish()
        return request

    def clear_messages(self) -> None:
        if self._tracker.state.turn_in_progress:
            raise SessionBusyError(self._tracker.state.value)
        self._messages = []
        self._archived = []
        self._accumulator.discard()
        self._pending_permission = None
        self._tracker.reset()
        self._publish()

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            messages=tuple(self._archived) + tuple(self._messages),
            current_partial_text=self._accumulator.text,
            session_id=self._tracker.session_id,
            saved_at=utc_now(),
        )

    def restore(self, snapshot: ConversationSnapshot) -> bool:
        """Overwrite all in-memory state with the snapshot.

        A snapshot that was already applied is skipped, so repeated calls
        leave the conversation untouched.
        """
        marker = (snapshot.saved_at, snapshot.session_id)
        if marker == self._last_restored:
            logger.info(f"Snapshot from {snapshot.saved_at} already restored; skipping")
            return False
        if self._tracker.state.turn_in_progress:
            raise SessionBusyError(self._tracker.state.value)

        messages = list(snapshot.messages)
        state = LifecycleState.COMPLETED if snapshot.session_id else LifecycleState.IDLE
        if snapshot.current_partial_text:
            messages.append(
                Message(
                    id=str(uuid5(NAMESPACE_URL, f"assistant-chat-recovery:{snapshot.saved_at}")),
                    role=MessageRole.ASSISTANT,
                    content=snapshot.current_partial_text,
                    timestamp=snapshot.saved_at,
                )
            )
            state = LifecycleState.INTERRUPTED

        self._messages = []
        self._archived = []
        for message in messages:
            self._append(message)
        self._accumulator.discard()
        self._pending_permission = None
        self._error = None
        self._tracker.reset(snapshot.session_id, state)
        self._last_restored = marker
        logger.info(f"Restored {len(messages)} message(s) from snapshot saved at {snapshot.saved_at}")
        self._publish()
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def archived_messages(self) -> tuple[Message, ...]:
        return tuple(self._archived)

    def all_messages(self) -> tuple[Message, ...]:
        return tuple(self._archived) + tuple(self._messages)

    @property
    def is_streaming(self) -> bool:
        return self._tracker.state is LifecycleState.STREAMING

    @property
    def lifecycle_state(self) -> LifecycleState:
        return self._tracker.state

    @property
    def session_id(self) -> str | None:
        return self._tracker.session_id

    @property
    def partial_text(self) -> str:
        return self._accumulator.text

    @property
    def open_tool_calls(self) -> tuple[ToolCall, ...]:
        return self._ledger.open_calls

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def pending_permission(self) -> PermissionRequest | None:
        return self._pending_permission

    def view(self) -> ConversationView:
        return ConversationView(
            messages=tuple(self._messages),
            archived_count=len(self._archived),
            lifecycle_state=self._tracker.state,
            session_id=self._tracker.session_id,
            partial_text=self._accumulator.text,
            turn_tool_calls=self._ledger.calls,
            pending_permission=self._pending_permission,
            error=self._error,
        )

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_session_start(self, event: SessionStart) -> None:
        logger.info(f"Session {event.session_id} streaming")

    def _on_text(self, event: TextDelta | AssistantText) -> None:
        self._accumulator.append(event.text)

    def _on_tool_start(self, event: ToolStart) -> None:
        self._ledger.on_start(event.tool_name, event.input, call_id=event.call_id)

    def _on_tool_end(self, event: ToolEnd) -> None:
        self._ledger.on_end(event.tool_name, event.output, call_id=event.call_id, is_error=event.is_error)

    def _on_permission_request(self, event: PermissionRequested) -> None:
        if self._pending_permission is not None:
            logger.warning(
                f"Permission request for session {event.session_id} received while "
                f"{self._pending_permission.id} is still pending; keeping the first"
            )
            return
        self._pending_permission = PermissionRequest(
            id=new_id(),
            session_id=event.session_id,
            denials=event.denials,
            created_at=utc_now(),
        )
        names = ", ".join(d.tool_name for d in event.denials) or "n/a"
        logger.info(f"Permission requested for session {event.session_id} (tools={names})")

    def _on_result(self, event: Result) -> None:
        if event.subtype != "success":
            logger.warning(f"Turn ended with result subtype {event.subtype!r}")
        if event.content and not self._accumulator.text:
            self._accumulator.append(event.content)
        self._finalize_turn()

    def _on_error(self, event: ErrorEvent) -> None:
        logger.warning(f"Assistant reported an error: {event.error}")
        self._finalize_turn()
        self._error = event.error

    def _on_session_end(self, _event: SessionEnd) -> None:
        self._finalize_turn()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_turn_buffers(self) -> None:
        if not self._accumulator.is_empty:
            logger.warning("Stream buffer was not flushed before a new turn; discarding it")
        self._accumulator.discard()
        self._pending_permission = None

    def _finalize_turn(self) -> Message | None:
        message = self._accumulator.finalize()
        if message is not None:
            self._append(message)
        return message

    def _append(self, message: Message) -> None:
        self._messages.append(message)
        limit = self._max_in_memory_messages
        if limit <= 0 or len(self._messages) <= limit:
            return
        overflow = len(self._messages) - limit
        self._archived.extend(self._messages[:overflow])
        del self._messages[:overflow]
        logger.debug(f"Archived {overflow} message(s); {len(self._archived)} held outside the live list")

    def _fail(self, error: str) -> None:
        self._finalize_turn()
        self._tracker.force_error(error)
        self._error = error

    def _on_transport_failure(self, operation: str, ex: Exception) -> None:
        logger.warning(f"Transport {operation} failed: {ex}")
        self._fail(f"{operation} failed: {ex}")
        self._publish()

    def _publish(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as ex:
                logger.warning(f"Conversation listener failed: {ex}")
