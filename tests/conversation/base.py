import asyncio
import json
import unittest

from assistant_chat.conversation import ConversationStore, ConversationView


class FakeTransport:
    def __init__(self, session_id: str | None = "s1") -> None:
        self.session_id = session_id
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.on_start = None

    async def start_turn(self, content: str) -> str | None:
        self.calls.append(("start", content))
        if self.on_start is not None:
            self.on_start()
        if self.fail_with is not None:
            raise self.fail_with
        return self.session_id

    async def interrupt_turn(self, session_id: str) -> None:
        self.calls.append(("interrupt", session_id))
        if self.fail_with is not None:
            raise self.fail_with

    async def continue_turn(self, session_id: str) -> None:
        self.calls.append(("continue", session_id))
        if self.fail_with is not None:
            raise self.fail_with


def line(kind: str, **fields) -> str:
    return json.dumps({"type": kind, **fields})


class ConversationTestCase(unittest.TestCase):
    max_in_memory_messages = 200

    def setUp(self) -> None:
        self._transport = FakeTransport()
        self._store = ConversationStore(self._transport, max_in_memory_messages=self.max_in_memory_messages)
        self._views: list[ConversationView] = []
        self._store.subscribe(self._views.append)

    def send(self, content: str = "hi") -> str | None:
        return asyncio.run(self._store.send(content))

    def feed(self, *lines: str) -> list[bool]:
        return [self._store.handle_raw(raw) for raw in lines]

    def start_streaming(self, content: str = "hi", session_id: str = "s1") -> None:
        self.send(content)
        self.feed(line("session_start", sessionId=session_id))

    def assistant_messages(self):
        return [m for m in self._store.messages if m.role.value == "assistant"]
