from __future__ import annotations

from typing import Any

from loguru import logger

from assistant_chat.conversation.models import ToolCall, ToolStatus

TURN_ENDED_REASON = "turn ended while tool was running"


class ToolCallLedger:
    """Tool invocations of the active turn, in start order.

    End events are matched by exact call id when both sides carry one.
    Otherwise the oldest running call with the same tool name wins.
    """

    def __init__(self) -> None:
        self._calls: list[ToolCall] = []

    def on_start(self, name: str, tool_input: dict[str, Any] | None = None, *, call_id: str | None = None) -> ToolCall:
        call = ToolCall.new(name, tool_input, call_id=call_id).start()
        self._calls.append(call)
        logger.debug(f"Tool started: {name} (id={call.id}, call_id={call_id})")
        return call

    def on_end(
        self,
        name: str,
        output: str | None = None,
        *,
        call_id: str | None = None,
        is_error: bool = False,
    ) -> ToolCall | None:
        index = self._find_running(name, call_id)
        if index is None:
            logger.warning(f"Unmatched tool_end for {name!r} (call_id={call_id}); ignoring")
            return None

        current = self._calls[index]
        if is_error:
            updated = current.fail(output or "tool reported an error")
        else:
            updated = current.complete(output)
        self._calls[index] = updated
        logger.debug(f"Tool {updated.status.value}: {name} (id={updated.id})")
        return updated

    def close_turn(self, reason: str = TURN_ENDED_REASON) -> tuple[ToolCall, ...]:
        """Fail every call still running and hand back the frozen turn record."""
        for index, call in enumerate(self._calls):
            if call.status is ToolStatus.RUNNING:
                logger.warning(f"Tool {call.name!r} (id={call.id}) still running at turn end; marking failed")
                self._calls[index] = call.fail(reason)
        snapshot = tuple(self._calls)
        self._calls = []
        return snapshot

    def reset(self) -> None:
        self._calls = []

    @property
    def calls(self) -> tuple[ToolCall, ...]:
        return tuple(self._calls)

    @property
    def open_calls(self) -> tuple[ToolCall, ...]:
        return tuple(c for c in self._calls if c.status is ToolStatus.RUNNING)

    def __len__(self) -> int:
        return len(self._calls)

    def _find_running(self, name: str, call_id: str | None) -> int | None:
        if call_id is not None:
            for index, call in enumerate(self._calls):
                if call.call_id == call_id and call.status is ToolStatus.RUNNING:
                    return index
        for index, call in enumerate(self._calls):
            if call.status is not ToolStatus.RUNNING or call.name != name:
                continue
            if call_id is not None and call.call_id is not None:
                continue
            return index
        return None
