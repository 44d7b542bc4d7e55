from __future__ import annotations

import asyncio
import json
import platform
import subprocess
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from assistant_chat.conversation.errors import TransportError

_IS_WINDOWS = platform.system() == "Windows"
# stream-json lines carry whole tool results
_STREAM_LIMIT = 16 * 1024 * 1024


@runtime_checkable
class ChatTransport(Protocol):
    async def start_turn(self, content: str) -> str | None:
        """Begin a new turn. Returns the session id when it is known up front."""
        ...

    async def interrupt_turn(self, session_id: str) -> None: ...

    async def continue_turn(self, session_id: str) -> None: ...


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason} while spawning assistant CLI. Retrying in {wait:.1f}s (attempt {attempt}/3)...")


class StreamNormalizer:
    """Rewrites raw CLI stream-json lines into the chat event protocol.

    ``system/init`` becomes ``session_start``; ``tool_use`` blocks inside
    assistant messages become ``tool_start``; ``tool_result`` blocks inside
    user messages become ``tool_end``. Everything else passes through.
    """

    def __init__(self) -> None:
        self._tool_names: dict[str, str] = {}
        self.result_seen = False

    def normalize(self, line: str) -> list[str]:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            return [line]
        if not isinstance(payload, dict):
            return [line]

        kind = payload.get("type")
        if kind == "result":
            self.result_seen = True
        if kind == "system" and payload.get("subtype") == "init" and payload.get("session_id"):
            return [_dump({"type": "session_start", "sessionId": payload["session_id"]})]
        if kind == "assistant":
            return [line, *self._tool_starts(payload)]
        if kind == "user":
            return self._tool_ends(payload)
        return [line]

    def _blocks(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        message = payload.get("message")
        if not isinstance(message, dict):
            return []
        content = message.get("content")
        if not isinstance(content, list):
            return []
        return [b for b in content if isinstance(b, dict)]

    def _tool_starts(self, payload: dict[str, Any]) -> list[str]:
        lines: list[str] = []
        for block in self._blocks(payload):
            if block.get("type") != "tool_use":
                continue
            name = str(block.get("name", ""))
            tool_use_id = block.get("id")
            if tool_use_id:
                self._tool_names[str(tool_use_id)] = name
            lines.append(
                _dump({"type": "tool_start", "toolName": name, "input": block.get("input") or {}, "toolUseId": tool_use_id})
            )
        return lines

    def _tool_ends(self, payload: dict[str, Any]) -> list[str]:
        lines: list[str] = []
        for block in self._blocks(payload):
            if block.get("type") != "tool_result":
                continue
            tool_use_id = str(block.get("tool_use_id", ""))
            lines.append(
                _dump(
                    {
                        "type": "tool_end",
                        "toolName": self._tool_names.pop(tool_use_id, ""),
                        "toolUseId": tool_use_id or None,
                        "output": _result_text(block.get("content")),
                        "isError": bool(block.get("is_error", False)),
                    }
                )
            )
        return lines


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _result_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(str(p.get("text", "")) for p in content if isinstance(p, dict) and p.get("type") == "text")
    return str(content)


class CliTransport:
    """Runs one assistant CLI process per turn and forwards its stdout lines."""

    def __init__(
        self,
        on_line: Callable[[str], Any],
        *,
        command: str = "claude",
        extra_args: list[str] | None = None,
        working_directory: str | None = None,
        continue_prompt: str = "continue",
    ):
        self._on_line = on_line
        self._command = command
        self._extra_args = list(extra_args or [])
        self._cwd = working_directory
        self._continue_prompt = continue_prompt
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task | None = None
        self._interrupted = False

    async def start_turn(self, content: str) -> str | None:
        session_id = str(uuid4())
        await self._launch(["-p", content, "--session-id", session_id])
        return session_id

    async def continue_turn(self, session_id: str) -> None:
        await self._launch(["-p", self._continue_prompt, "--resume", session_id])

    async def interrupt_turn(self, session_id: str) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._interrupted = True
        logger.info(f"Interrupting assistant process {process.pid} (session {session_id})")
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass
        except OSError as ex:
            raise TransportError(f"Failed to stop assistant process: {ex}") from ex

    async def close(self) -> None:
        if self._process is not None and self._process.returncode is None:
            await self.interrupt_turn("shutdown")
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

    async def _launch(self, turn_args: list[str]) -> None:
        if self._process is not None and self._process.returncode is None:
            raise TransportError("Assistant process is still running")
        args = [*turn_args, "--output-format", "stream-json", "--verbose", *self._extra_args]
        try:
            self._process = await self._spawn(args)
        except OSError as ex:
            raise TransportError(f"Failed to start {self._command}: {ex}") from ex
        self._interrupted = False
        self._reader = asyncio.create_task(self._pump(self._process))

    @retry(
        retry=retry_if_exception_type(BlockingIOError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        before_sleep=_on_retry,
        reraise=True,
    )
    async def _spawn(self, args: list[str]) -> asyncio.subprocess.Process:
        logger.debug(f"Spawning {self._command} with {len(args)} argument(s) (cwd={self._cwd})")
        kwargs: dict[str, Any] = {}
        if _IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        return await asyncio.create_subprocess_exec(
            self._command,
            *args,
            stdin=subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._cwd,
            limit=_STREAM_LIMIT,
            **kwargs,
        )

    async def _pump(self, process: asyncio.subprocess.Process) -> None:
        normalizer = StreamNormalizer()
        assert process.stdout is not None
        stderr_task = asyncio.create_task(process.stderr.read()) if process.stderr is not None else None
        try:
            while True:
                raw = await process.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                for normalized in normalizer.normalize(line):
                    self._on_line(normalized)
        except Exception as ex:
            logger.exception(f"Reading assistant output failed (pid {process.pid})")
            if process.returncode is None:
                process.kill()
            await process.wait()
            if stderr_task is not None:
                stderr_task.cancel()
            if not self._interrupted:
                self._on_line(_dump({"type": "error", "error": f"Lost assistant output stream: {ex}"}))
            return

        returncode = await process.wait()
        stderr = await stderr_task if stderr_task is not None else b""
        if self._interrupted:
            return
        if returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            logger.warning(f"Assistant process exited with code {returncode}")
            self._on_line(_dump({"type": "error", "error": f"Assistant process exited with code {returncode}: {detail}"}))
            return
        if normalizer.result_seen:
            logger.debug("Assistant process exited after its result line")
            return
        self._on_line(_dump({"type": "session_end"}))


async def detect_cli(command: str = "claude") -> str | None:
    """Return the first line of ``<command> --version`` or None when unavailable."""
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            "--version",
            stdin=subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=10)
    except (OSError, asyncio.TimeoutError):
        return None
    if proc.returncode != 0:
        return None
    lines = stdout.decode(errors="replace").splitlines()
    return lines[0].strip() if lines else None
