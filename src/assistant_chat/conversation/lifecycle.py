"""Lifecycle state machine for one assistant session.

    idle --send--> starting --session_start--> streaming
    streaming --result|session_end--> completed
    streaming --interrupt--> interrupted
    idle|starting|streaming --error--> errored
    completed|interrupted|errored --send|continue--> starting

Events that are not legal in the current state are logged and dropped.
"""

from __future__ import annotations

from loguru import logger

from assistant_chat.conversation.errors import NotStreamingError, SessionBusyError
from assistant_chat.conversation.events import (
    AssistantText,
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
)
from assistant_chat.conversation.models import LifecycleState

_STREAM_EVENTS: frozenset[type] = frozenset(
    {TextDelta, AssistantText, ToolStart, ToolEnd, PermissionRequested, Result, SessionEnd, ErrorEvent}
)

_LEGAL_EVENTS: dict[LifecycleState, frozenset[type]] = {
    LifecycleState.IDLE: frozenset({ErrorEvent}),
    LifecycleState.STARTING: frozenset({SessionStart, ErrorEvent}),
    LifecycleState.STREAMING: _STREAM_EVENTS,
    LifecycleState.INTERRUPTED: frozenset(),
    LifecycleState.COMPLETED: frozenset(),
    LifecycleState.ERRORED: frozenset(),
}

_EVENT_TRANSITIONS: dict[tuple[LifecycleState, type], LifecycleState] = {
    (LifecycleState.STARTING, SessionStart): LifecycleState.STREAMING,
    (LifecycleState.STREAMING, Result): LifecycleState.COMPLETED,
    (LifecycleState.STREAMING, SessionEnd): LifecycleState.COMPLETED,
    (LifecycleState.IDLE, ErrorEvent): LifecycleState.ERRORED,
    (LifecycleState.STARTING, ErrorEvent): LifecycleState.ERRORED,
    (LifecycleState.STREAMING, ErrorEvent): LifecycleState.ERRORED,
}


class SessionLifecycleTracker:
    def __init__(self) -> None:
        self._state = LifecycleState.IDLE
        self._session_id: str | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def begin_turn(self) -> None:
        if self._state.turn_in_progress:
            raise SessionBusyError(self._state.value)
        self._move(LifecycleState.STARTING, "turn requested")

    def admit(self, event: Event) -> bool:
        """Apply the event's transition, if any. False means drop the event."""
        if isinstance(event, Unrecognized):
            logger.debug(f"Ignoring unrecognized event kind {event.kind!r}")
            return False

        event_type = type(event)
        if event_type not in _LEGAL_EVENTS[self._state]:
            logger.warning(f"Dropping {event_type.__name__} received while {self._state.value}")
            return False

        if isinstance(event, SessionStart):
            self._session_id = event.session_id

        target = _EVENT_TRANSITIONS.get((self._state, event_type))
        if target is not None:
            self._move(target, event_type.__name__)
        return True

    def interrupt(self) -> None:
        if self._state is not LifecycleState.STREAMING:
            raise NotStreamingError(self._state.value)
        self._move(LifecycleState.INTERRUPTED, "interrupt")

    def force_error(self, reason: str) -> None:
        self._move(LifecycleState.ERRORED, reason)

    def adopt_session_id(self, session_id: str | None) -> None:
        # session_start wins once it has arrived
        if session_id and (self._session_id is None or self._state is LifecycleState.STARTING):
            self._session_id = session_id

    def reset(self, session_id: str | None = None, state: LifecycleState = LifecycleState.IDLE) -> None:
        self._session_id = session_id
        self._state = state

    def _move(self, target: LifecycleState, reason: str) -> None:
        if target is self._state:
            return
        logger.debug(f"Lifecycle {self._state.value} -> {target.value} ({reason})")
        self._state = target
