import asyncio
import os
import signal
import sys

from dotenv import load_dotenv
from loguru import logger

from assistant_chat.app_config import load_json_config, parse_app_config
from assistant_chat.bootstrap import AppRuntime, bootstrap_runtime
from assistant_chat.conversation import ConversationError, ConversationView, MessageRole, TransportError

_LINE_PREFIX = "assistant> "
_USER_PROMPT = "you> "


class TerminalRenderer:
    """Prints the live conversation view as it changes."""

    def __init__(self) -> None:
        self._printed = 0
        self._last_message_id: str | None = None
        self._shown_tools: set[str] = set()
        self._last_error: str | None = None
        self._last_permission: str | None = None

    def __call__(self, view: ConversationView) -> None:
        partial = view.partial_text
        if len(partial) > self._printed:
            if self._printed == 0:
                print(f"\n{_LINE_PREFIX}", end="")
            print(partial[self._printed:], end="", flush=True)
            self._printed = len(partial)

        for call in view.turn_tool_calls:
            if call.id not in self._shown_tools:
                self._shown_tools.add(call.id)
                print(f"\n{_LINE_PREFIX}[tool] {call.name}", flush=True)

        if view.messages and view.messages[-1].id != self._last_message_id:
            message = view.messages[-1]
            self._last_message_id = message.id
            if message.role is MessageRole.ASSISTANT:
                if self._printed == 0:
                    print(f"\n{_LINE_PREFIX}", end="")
                print(message.content[self._printed:])
                for call in message.tool_calls:
                    print(f"{_LINE_PREFIX}[tool] {call.name}: {call.status.value}")
                self._printed = 0
                self._shown_tools.clear()

        if view.pending_permission is not None and view.pending_permission.id != self._last_permission:
            self._last_permission = view.pending_permission.id
            for denial in view.pending_permission.denials:
                print(f"\n{_LINE_PREFIX}[permission] {denial.tool_name}: {denial.reason}")

        if view.error is not None and view.error != self._last_error:
            print(f"\n{_LINE_PREFIX}[error] {view.error}")
        self._last_error = view.error


def _print_help() -> None:
    print(f"{_LINE_PREFIX}Available commands:")
    print(f"{_LINE_PREFIX}- /help")
    print(f"{_LINE_PREFIX}- /interrupt")
    print(f"{_LINE_PREFIX}- /continue [session_id]")
    print(f"{_LINE_PREFIX}- /allow (dismiss the pending permission request)")
    print(f"{_LINE_PREFIX}- /clear-error")
    print(f"{_LINE_PREFIX}- /clear")
    print(f"{_LINE_PREFIX}- /archive (show archived message count)")
    print(f"{_LINE_PREFIX}- exit")


async def _handle_command(runtime: AppRuntime, command: str) -> None:
    conversation = runtime.conversation
    parts = command.split()
    name = parts[0]
    if name == "/help":
        _print_help()
    elif name == "/interrupt":
        await conversation.interrupt()
    elif name == "/continue":
        await conversation.continue_chat(parts[1] if len(parts) > 1 else None)
    elif name == "/allow":
        request = conversation.resolve_permission()
        print(f"{_LINE_PREFIX}{'Permission request dismissed' if request else 'No pending permission request'}")
    elif name == "/clear-error":
        conversation.clear_error()
    elif name == "/clear":
        conversation.clear_messages()
        print(f"{_LINE_PREFIX}Conversation cleared")
    elif name == "/archive":
        print(f"{_LINE_PREFIX}{len(conversation.archived_messages)} archived message(s)")
    else:
        print(f"{_LINE_PREFIX}Unknown local command: {command}")


async def _repl(runtime: AppRuntime) -> None:
    while True:
        try:
            user_input = await asyncio.to_thread(input, _USER_PROMPT)
        except (EOFError, KeyboardInterrupt):
            return

        trimmed = user_input.strip()
        if trimmed.lower() in ("exit", "quit"):
            return
        if not trimmed:
            continue

        try:
            if trimmed.startswith("/"):
                await _handle_command(runtime, trimmed)
            else:
                await runtime.conversation.send(trimmed)
        except ConversationError as ex:
            print(f"{_LINE_PREFIX}{ex}")


def _terminate(runtime: AppRuntime, sig: signal.Signals) -> None:
    if runtime.crash_guard is not None:
        runtime.crash_guard.notify_abnormal_termination(sig.name)
    logger.complete()
    # the input() worker thread cannot be cancelled
    os._exit(128 + sig.value)


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    try:
        runtime = await bootstrap_runtime(app)
    except TransportError as ex:
        logger.error(str(ex))
        print(f"Cannot run '{app.cli_command}'. Set CliCommand in config.json or ASSISTANT_CLI_COMMAND.")
        sys.exit(1)

    runtime.conversation.subscribe(TerminalRenderer())

    loop = asyncio.get_running_loop()
    if runtime.crash_guard is not None and sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGHUP):
            loop.add_signal_handler(sig, _terminate, runtime, sig)

    print(f"assistant-chat ({runtime.cli_version}) - type 'exit' to quit, '/help' for commands")
    for description in runtime.log_descriptions:
        print(f"  log: {description}")
    if runtime.restored:
        print(f"{_LINE_PREFIX}Recovered {len(runtime.conversation.all_messages())} message(s) from the last session")

    try:
        await _repl(runtime)
    except Exception:
        if runtime.crash_guard is not None:
            runtime.crash_guard.notify_abnormal_termination("unhandled exception")
        raise
    finally:
        await runtime.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
