import unittest

from assistant_chat.conversation import InvalidToolTransitionError, ToolCall, ToolCallLedger, ToolStatus
from assistant_chat.conversation.ledger import TURN_ENDED_REASON


class ToolCallLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._ledger = ToolCallLedger()

    def test_start_creates_running_record(self) -> None:
        call = self._ledger.on_start("grep", {"q": "foo"})
        self.assertEqual(ToolStatus.RUNNING, call.status)
        self.assertEqual({"q": "foo"}, call.input)
        self.assertIsNone(call.output)
        self.assertEqual((call,), self._ledger.open_calls)

    def test_end_completes_and_stamps_completion_time(self) -> None:
        self._ledger.on_start("grep", {"q": "foo"})
        done = self._ledger.on_end("grep", "3 matches")
        self.assertIsNotNone(done)
        self.assertEqual(ToolStatus.COMPLETED, done.status)
        self.assertEqual("3 matches", done.output)
        self.assertIsNotNone(done.completed_at)
        self.assertEqual((), self._ledger.open_calls)

    def test_same_named_calls_complete_oldest_first(self) -> None:
        first = self._ledger.on_start("read_file", {"path": "a"})
        second = self._ledger.on_start("read_file", {"path": "b"})

        ended = self._ledger.on_end("read_file", "A")
        self.assertEqual(first.id, ended.id)
        self.assertEqual([second.id], [c.id for c in self._ledger.open_calls])

    def test_exact_call_id_wins_over_name_order(self) -> None:
        self._ledger.on_start("bash", {}, call_id="tu-1")
        second = self._ledger.on_start("bash", {}, call_id="tu-2")

        ended = self._ledger.on_end("bash", "ok", call_id="tu-2")
        self.assertEqual(second.id, ended.id)

    def test_unmatched_end_is_ignored(self) -> None:
        self.assertIsNone(self._ledger.on_end("grep", "nothing"))
        self.assertEqual(0, len(self._ledger))

        self._ledger.on_start("grep", {})
        self._ledger.on_end("grep", "once")
        self.assertIsNone(self._ledger.on_end("grep", "twice"))
        self.assertEqual("once", self._ledger.calls[0].output)

    def test_error_end_fails_the_call(self) -> None:
        self._ledger.on_start("bash", {})
        failed = self._ledger.on_end("bash", "permission denied", is_error=True)
        self.assertEqual(ToolStatus.FAILED, failed.status)
        self.assertEqual("permission denied", failed.output)

    def test_close_turn_fails_running_calls_and_empties_ledger(self) -> None:
        self._ledger.on_start("grep", {})
        self._ledger.on_end("grep", "done")
        self._ledger.on_start("bash", {})

        snapshot = self._ledger.close_turn()

        self.assertEqual([ToolStatus.COMPLETED, ToolStatus.FAILED], [c.status for c in snapshot])
        self.assertEqual(TURN_ENDED_REASON, snapshot[1].output)
        self.assertTrue(all(c.status.is_terminal for c in snapshot))
        self.assertEqual(0, len(self._ledger))


class ToolCallTransitionTests(unittest.TestCase):
    def test_status_only_moves_forward(self) -> None:
        pending = ToolCall.new("grep")
        self.assertEqual(ToolStatus.PENDING, pending.status)
        completed = pending.start().complete("ok")

        with self.assertRaises(InvalidToolTransitionError):
            completed.start()
        with self.assertRaises(InvalidToolTransitionError):
            completed.fail("late")
        with self.assertRaises(InvalidToolTransitionError):
            pending.complete("skipped running")
        with self.assertRaises(InvalidToolTransitionError):
            pending.start().fail("x").complete("y")

    def test_transitions_return_new_records(self) -> None:
        pending = ToolCall.new("grep", {"q": "x"})
        running = pending.start()
        self.assertEqual(ToolStatus.PENDING, pending.status)
        self.assertEqual(pending.id, running.id)


if __name__ == "__main__":
    unittest.main()
