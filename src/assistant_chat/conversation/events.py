"""Typed protocol events and the decoder that produces them.

Every line the transport emits is a JSON object tagged by ``type``. ``decode``
turns it into one of the frozen event classes below, or into a ``DecodeError``
value when the payload is malformed. It never raises.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from assistant_chat.conversation.models import PermissionDenial


@dataclass(frozen=True)
class SessionStart:
    session_id: str


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class AssistantText:
    """Text parts of a whole ``assistant`` message, already concatenated."""

    text: str


@dataclass(frozen=True)
class ToolStart:
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True)
class ToolEnd:
    tool_name: str
    output: str | None = None
    call_id: str | None = None
    is_error: bool = False


@dataclass(frozen=True)
class PermissionRequested:
    session_id: str
    denials: tuple[PermissionDenial, ...]


@dataclass(frozen=True)
class Result:
    subtype: str
    content: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    error: str


@dataclass(frozen=True)
class SessionEnd:
    pass


@dataclass(frozen=True)
class Unrecognized:
    kind: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class DecodeError:
    raw: str
    message: str


Event = (
    SessionStart
    | TextDelta
    | AssistantText
    | ToolStart
    | ToolEnd
    | PermissionRequested
    | Result
    | ErrorEvent
    | SessionEnd
    | Unrecognized
)

EVENT_TYPES: tuple[type, ...] = (
    SessionStart,
    TextDelta,
    AssistantText,
    ToolStart,
    ToolEnd,
    PermissionRequested,
    Result,
    ErrorEvent,
    SessionEnd,
    Unrecognized,
)


def _field(payload: dict[str, Any], *names: str, default: Any = ...) -> Any:
    for name in names:
        if name in payload:
            return payload[name]
    if default is ...:
        raise KeyError(names[0])
    return default


def _require_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _parse_session_start(payload: dict[str, Any]) -> SessionStart:
    return SessionStart(session_id=_require_str(_field(payload, "sessionId", "session_id"), "sessionId"))


def _parse_text_delta(payload: dict[str, Any]) -> TextDelta:
    return TextDelta(text=_require_str(_field(payload, "text"), "text"))


def _parse_assistant(payload: dict[str, Any]) -> AssistantText:
    message = _field(payload, "message")
    if not isinstance(message, dict):
        raise TypeError("message must be an object")
    content = message.get("content", [])
    if isinstance(content, str):
        return AssistantText(text=content)
    if not isinstance(content, list):
        raise TypeError("message.content must be a list")
    parts = [
        str(part.get("text", ""))
        for part in content
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return AssistantText(text="".join(parts))


def _parse_tool_start(payload: dict[str, Any]) -> ToolStart:
    tool_input = _field(payload, "input", default=None) or {}
    if not isinstance(tool_input, dict):
        raise TypeError("input must be an object")
    return ToolStart(
        tool_name=_require_str(_field(payload, "toolName", "tool_name"), "toolName"),
        input=tool_input,
        call_id=_optional_str(_field(payload, "toolUseId", "tool_use_id", "id", default=None)),
    )


def _parse_tool_end(payload: dict[str, Any]) -> ToolEnd:
    return ToolEnd(
        tool_name=_require_str(_field(payload, "toolName", "tool_name"), "toolName"),
        output=_optional_str(_field(payload, "output", default=None)),
        call_id=_optional_str(_field(payload, "toolUseId", "tool_use_id", "id", default=None)),
        is_error=bool(_field(payload, "isError", "is_error", default=False)),
    )


def _parse_denial(item: Any) -> PermissionDenial:
    if not isinstance(item, dict):
        raise TypeError("denial must be an object")
    known = {"toolName", "tool_name", "reason", "details"}
    details = dict(item.get("details") or {})
    details.update({k: v for k, v in item.items() if k not in known})
    return PermissionDenial(
        tool_name=_require_str(_field(item, "toolName", "tool_name"), "toolName"),
        reason=str(item.get("reason", "")),
        details=details,
    )


def _parse_permission_request(payload: dict[str, Any]) -> PermissionRequested:
    denials = _field(payload, "denials", default=None) or []
    if not isinstance(denials, list):
        raise TypeError("denials must be a list")
    return PermissionRequested(
        session_id=_require_str(_field(payload, "sessionId", "session_id"), "sessionId"),
        denials=tuple(_parse_denial(d) for d in denials),
    )


def _parse_result(payload: dict[str, Any]) -> Result:
    return Result(
        subtype=str(_field(payload, "subtype", default="success")),
        content=_optional_str(_field(payload, "content", "result", default=None)),
    )


def _parse_error(payload: dict[str, Any]) -> ErrorEvent:
    error = _field(payload, "error")
    if isinstance(error, dict):
        error = error.get("message") or json.dumps(error, ensure_ascii=False)
    return ErrorEvent(error=str(error))


_PARSERS: dict[str, Callable[[dict[str, Any]], Event]] = {
    "session_start": _parse_session_start,
    "text_delta": _parse_text_delta,
    "assistant": _parse_assistant,
    "tool_start": _parse_tool_start,
    "tool_end": _parse_tool_end,
    "permission_request": _parse_permission_request,
    "result": _parse_result,
    "error": _parse_error,
    "session_end": lambda _payload: SessionEnd(),
}

RECOGNIZED_KINDS = frozenset(_PARSERS)


def decode(raw: str | bytes) -> Event | DecodeError:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw.strip()
    if not text:
        return DecodeError(raw=raw, message="empty payload")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as ex:
        return DecodeError(raw=raw, message=f"invalid JSON: {ex}")
    if not isinstance(payload, dict):
        return DecodeError(raw=raw, message=f"expected a JSON object, got {type(payload).__name__}")

    kind = payload.get("type")
    if not isinstance(kind, str):
        return DecodeError(raw=raw, message="missing event type")

    parser = _PARSERS.get(kind)
    if parser is None:
        return Unrecognized(kind=kind, payload=payload)
    try:
        return parser(payload)
    except KeyError as ex:
        return DecodeError(raw=raw, message=f"{kind}: missing field {ex.args[0]!r}")
    except (TypeError, ValueError) as ex:
        return DecodeError(raw=raw, message=f"{kind}: {ex}")
