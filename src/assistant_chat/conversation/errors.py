from __future__ import annotations


class ConversationError(Exception):
    """Base class for command misuse reported back to the caller."""


class SessionBusyError(ConversationError):
    def __init__(self, state: str):
        super().__init__(f"A turn is already in progress (state={state})")
        self.state = state


class NoActiveSessionError(ConversationError):
    def __init__(self) -> None:
        super().__init__("No session to continue")


class NotStreamingError(ConversationError):
    def __init__(self, state: str):
        super().__init__(f"Nothing to interrupt (state={state})")
        self.state = state


class InvalidToolTransitionError(ValueError):
    def __init__(self, tool_call_id: str, current: str, target: str):
        super().__init__(f"Tool call {tool_call_id}: illegal status change {current} -> {target}")
        self.tool_call_id = tool_call_id
        self.current = current
        self.target = target


class TransportError(RuntimeError):
    """Subprocess spawn or IPC failure raised by a transport."""
