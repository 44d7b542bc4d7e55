from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from assistant_chat.conversation.errors import InvalidToolTransitionError


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


def new_id() -> str:
    return str(uuid4())


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.FAILED)


class LifecycleState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleState.INTERRUPTED, LifecycleState.COMPLETED, LifecycleState.ERRORED)

    @property
    def turn_in_progress(self) -> bool:
        return self in (LifecycleState.STARTING, LifecycleState.STREAMING)


_TOOL_TRANSITIONS: dict[ToolStatus, frozenset[ToolStatus]] = {
    ToolStatus.PENDING: frozenset({ToolStatus.RUNNING}),
    ToolStatus.RUNNING: frozenset({ToolStatus.COMPLETED, ToolStatus.FAILED}),
    ToolStatus.COMPLETED: frozenset(),
    ToolStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    status: ToolStatus
    input: dict[str, Any]
    started_at: str
    output: str | None = None
    completed_at: str | None = None
    call_id: str | None = None

    @classmethod
    def new(cls, name: str, tool_input: dict[str, Any] | None = None, *, call_id: str | None = None) -> ToolCall:
        return cls(
            id=new_id(),
            name=name,
            status=ToolStatus.PENDING,
            input=dict(tool_input or {}),
            started_at=utc_now(),
            call_id=call_id,
        )

    def _transition(self, target: ToolStatus, **changes: Any) -> ToolCall:
        if target not in _TOOL_TRANSITIONS[self.status]:
            raise InvalidToolTransitionError(self.id, self.status.value, target.value)
        return replace(self, status=target, **changes)

    def start(self) -> ToolCall:
        return self._transition(ToolStatus.RUNNING)

    def complete(self, output: str | None) -> ToolCall:
        return self._transition(ToolStatus.COMPLETED, output=output, completed_at=utc_now())

    def fail(self, reason: str) -> ToolCall:
        return self._transition(ToolStatus.FAILED, output=reason, completed_at=utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "callId": self.call_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            status=ToolStatus(data["status"]),
            input=dict(data.get("input") or {}),
            started_at=str(data["startedAt"]),
            output=data.get("output"),
            completed_at=data.get("completedAt"),
            call_id=data.get("callId"),
        )


@dataclass(frozen=True)
class Message:
    id: str
    role: MessageRole
    content: str
    timestamp: str
    tool_calls: tuple[ToolCall, ...] = ()

    @classmethod
    def create(cls, role: MessageRole, content: str, tool_calls: tuple[ToolCall, ...] = ()) -> Message:
        return cls(id=new_id(), role=role, content=content, timestamp=utc_now(), tool_calls=tool_calls)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.tool_calls:
            data["toolCalls"] = [call.to_dict() for call in self.tool_calls]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data["id"]),
            role=MessageRole(data["role"]),
            content=str(data.get("content", "")),
            timestamp=str(data["timestamp"]),
            tool_calls=tuple(ToolCall.from_dict(c) for c in data.get("toolCalls") or []),
        )


@dataclass(frozen=True)
class PermissionDenial:
    tool_name: str
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PermissionRequest:
    id: str
    session_id: str
    denials: tuple[PermissionDenial, ...]
    created_at: str


@dataclass(frozen=True)
class ConversationView:
    """Read-only projection handed to the renderer after every change."""

    messages: tuple[Message, ...]
    archived_count: int
    lifecycle_state: LifecycleState
    session_id: str | None
    partial_text: str
    turn_tool_calls: tuple[ToolCall, ...]
    pending_permission: PermissionRequest | None
    error: str | None

    @property
    def is_streaming(self) -> bool:
        return self.lifecycle_state is LifecycleState.STREAMING


@dataclass(frozen=True)
class ConversationSnapshot:
    messages: tuple[Message, ...]
    current_partial_text: str
    session_id: str | None
    saved_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "currentPartialText": self.current_partial_text,
            "sessionId": self.session_id,
            "savedAt": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationSnapshot:
        return cls(
            messages=tuple(Message.from_dict(m) for m in data.get("messages") or []),
            current_partial_text=str(data.get("currentPartialText") or ""),
            session_id=data.get("sessionId"),
            saved_at=str(data["savedAt"]),
        )
