from __future__ import annotations

from loguru import logger

from assistant_chat.conversation.ledger import TURN_ENDED_REASON, ToolCallLedger
from assistant_chat.conversation.models import Message, MessageRole


class MessageAccumulator:
    def __init__(self, ledger: ToolCallLedger):
        self._ledger = ledger
        self._chunks: list[str] = []

    def append(self, text: str) -> None:
        if text:
            self._chunks.append(text)

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def is_empty(self) -> bool:
        return not self._chunks and len(self._ledger) == 0

    def finalize(self, *, reason: str = TURN_ENDED_REASON) -> Message | None:
        """Freeze the buffer and the ledger into one assistant message.

        Returns None when nothing was produced during the turn.
        """
        if self.is_empty:
            return None
        tool_calls = self._ledger.close_turn(reason)
        message = Message.create(MessageRole.ASSISTANT, self.text, tool_calls)
        self._chunks = []
        logger.info(
            f"Finalized assistant message {message.id} "
            f"({len(message.content)} chars, {len(tool_calls)} tool call(s))"
        )
        return message

    def discard(self) -> None:
        self._chunks = []
        self._ledger.reset()
