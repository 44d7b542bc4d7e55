import json
import unittest

from assistant_chat.conversation.events import (
    EVENT_TYPES,
    RECOGNIZED_KINDS,
    AssistantText,
    DecodeError,
    ErrorEvent,
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


class DecodeTests(unittest.TestCase):
    def test_decodes_every_recognized_kind(self) -> None:
        cases = {
            '{"type": "session_start", "sessionId": "s1"}': SessionStart("s1"),
            '{"type": "text_delta", "text": "Hel"}': TextDelta("Hel"),
            '{"type": "tool_end", "toolName": "grep", "output": "3 matches"}': ToolEnd("grep", "3 matches"),
            '{"type": "result", "subtype": "success"}': Result("success"),
            '{"type": "error", "error": "boom"}': ErrorEvent("boom"),
            '{"type": "session_end"}': SessionEnd(),
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(expected, decode(raw))
        self.assertEqual(
            {"session_start", "text_delta", "assistant", "tool_start", "tool_end",
             "permission_request", "result", "error", "session_end"},
            set(RECOGNIZED_KINDS),
        )

    def test_tool_start_carries_input_and_optional_call_id(self) -> None:
        event = decode('{"type": "tool_start", "toolName": "grep", "input": {"q": "foo"}}')
        self.assertEqual(ToolStart("grep", {"q": "foo"}), event)

        with_id = decode('{"type": "tool_start", "tool_name": "bash", "input": {}, "toolUseId": "tu-1"}')
        self.assertIsInstance(with_id, ToolStart)
        self.assertEqual("tu-1", with_id.call_id)

    def test_snake_case_session_id_is_accepted(self) -> None:
        self.assertEqual(SessionStart("abc"), decode('{"type": "session_start", "session_id": "abc"}'))

    def test_assistant_text_parts_are_concatenated(self) -> None:
        raw = json.dumps(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "Hel"},
                        {"type": "tool_use", "id": "t1", "name": "bash", "input": {}},
                        {"type": "text", "text": "lo"},
                    ]
                },
            }
        )
        self.assertEqual(AssistantText("Hello"), decode(raw))

    def test_permission_request_collects_denials_with_extra_details(self) -> None:
        raw = json.dumps(
            {
                "type": "permission_request",
                "sessionId": "s1",
                "denials": [{"toolName": "bash", "reason": "not allowed", "command": "rm -rf /"}],
            }
        )
        event = decode(raw)
        self.assertIsInstance(event, PermissionRequested)
        self.assertEqual("bash", event.denials[0].tool_name)
        self.assertEqual({"command": "rm -rf /"}, event.denials[0].details)

    def test_result_uses_cli_result_field_as_content(self) -> None:
        self.assertEqual(Result("success", "done"), decode('{"type": "result", "subtype": "success", "result": "done"}'))

    def test_unknown_kind_is_unrecognized(self) -> None:
        event = decode('{"type": "system", "subtype": "init"}')
        self.assertIsInstance(event, Unrecognized)
        self.assertEqual("system", event.kind)

    def test_malformed_payloads_become_decode_errors(self) -> None:
        for raw in ["", "not json", "[1, 2]", '{"text": "no type"}', '{"type": "text_delta"}',
                    '{"type": "text_delta", "text": 5}', '{"type": "tool_start", "toolName": "x", "input": "ls"}']:
            with self.subTest(raw=raw):
                result = decode(raw)
                self.assertIsInstance(result, DecodeError)
                self.assertEqual(raw, result.raw)
                self.assertTrue(result.message)

    def test_event_types_cover_every_decoded_class(self) -> None:
        self.assertEqual(10, len(EVENT_TYPES))
        self.assertIn(Unrecognized, EVENT_TYPES)


if __name__ == "__main__":
    unittest.main()
