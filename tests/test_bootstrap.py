import asyncio
import shutil
import sys
import unittest
from pathlib import Path
from uuid import uuid4

from assistant_chat.app_config import AppConfig
from assistant_chat.bootstrap import bootstrap_runtime
from assistant_chat.conversation import ConversationSnapshot, LifecycleState, Message, MessageRole, TransportError
from assistant_chat.recovery import DurableStore
from assistant_chat.recovery.store import RECOVERY_KEY

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class BootstrapRuntimeTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"bootstrap-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._db_path = str(self._tmp_dir / "recovery.db")
        store = DurableStore(self._db_path)
        snapshot = ConversationSnapshot(
            messages=(Message.create(MessageRole.USER, "before the crash"),),
            current_partial_text="half an answer",
            session_id="s1",
            saved_at="2026-03-01T10:00:00.000Z",
        )
        store.put(RECOVERY_KEY, snapshot.to_dict())
        store.close()

    def tearDown(self) -> None:
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def _config(self, cli_command: str) -> AppConfig:
        return AppConfig(
            cli_command=cli_command,
            cli_args=[],
            working_directory=None,
            continue_prompt="continue",
            max_in_memory_messages=200,
            recovery_enabled=True,
            recovery_db_path=self._db_path,
            recovery_scope="default",
            heartbeat_interval_seconds=1.0,
            heartbeat_stale_seconds=5.0,
            log_level="INFO",
            log_consumers=[],
        )

    def _saved_snapshot(self) -> dict | None:
        store = DurableStore(self._db_path)
        try:
            return store.get(RECOVERY_KEY)
        finally:
            store.close()

    def test_missing_cli_keeps_recovery_snapshot(self) -> None:
        with self.assertRaises(TransportError):
            asyncio.run(bootstrap_runtime(self._config("assistant-chat-missing-cli")))

        saved = self._saved_snapshot()
        self.assertIsNotNone(saved)
        self.assertEqual("half an answer", saved["currentPartialText"])

    def test_runnable_cli_restores_snapshot(self) -> None:
        async def scenario():
            runtime = await bootstrap_runtime(self._config(sys.executable))
            try:
                return runtime.restored, runtime.cli_version, runtime.conversation.view()
            finally:
                await runtime.shutdown()

        restored, version, view = asyncio.run(scenario())

        self.assertTrue(restored)
        self.assertTrue(version.startswith("Python"))
        self.assertEqual(["before the crash", "half an answer"], [m.content for m in view.messages])
        self.assertEqual(LifecycleState.INTERRUPTED, view.lifecycle_state)
        self.assertIsNone(self._saved_snapshot())


if __name__ == "__main__":
    unittest.main()
