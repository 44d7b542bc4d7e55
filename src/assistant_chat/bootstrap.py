from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from assistant_chat.app_config import AppConfig
from assistant_chat.conversation import ConversationStore, TransportError
from assistant_chat.logging_config import setup_logging
from assistant_chat.recovery import CrashGuard, CrashRecoveryBridge, DurableStore, EventEmitter
from assistant_chat.transport import CliTransport, detect_cli


@dataclass
class AppRuntime:
    conversation: ConversationStore
    transport: CliTransport
    cli_version: str
    recovery_store: DurableStore | None
    crash_guard: CrashGuard | None
    restored: bool
    log_descriptions: list[str]

    async def shutdown(self) -> None:
        await self.transport.close()
        if self.crash_guard is not None:
            await self.crash_guard.close()
        if self.recovery_store is not None:
            self.recovery_store.close()


async def bootstrap_runtime(app: AppConfig) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    # must run before on_boot(), which consumes the saved snapshot
    cli_version = await detect_cli(app.cli_command)
    if cli_version is None:
        raise TransportError(f"Assistant CLI not found or not runnable: {app.cli_command}")

    def forward(line: str) -> None:
        conversation.handle_raw(line)

    transport = CliTransport(
        forward,
        command=app.cli_command,
        extra_args=app.cli_args,
        working_directory=app.working_directory,
        continue_prompt=app.continue_prompt,
    )
    conversation = ConversationStore(transport, max_in_memory_messages=app.max_in_memory_messages)

    recovery_store: DurableStore | None = None
    crash_guard: CrashGuard | None = None
    restored = False

    if app.recovery_enabled:
        db_path = Path(app.recovery_db_path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        recovery_store = DurableStore(str(db_path), scope=app.recovery_scope)
        crash_guard = CrashGuard(
            CrashRecoveryBridge(recovery_store, conversation),
            recovery_store,
            EventEmitter(recovery_store),
            interval_seconds=app.heartbeat_interval_seconds,
            stale_after_seconds=app.heartbeat_stale_seconds,
        )
        restored = crash_guard.on_boot()
        await crash_guard.start()

    logger.info(
        f"Runtime ready (cli={app.cli_command}, recovery={'on' if app.recovery_enabled else 'off'}, "
        f"restored={restored})"
    )
    return AppRuntime(
        conversation=conversation,
        transport=transport,
        cli_version=cli_version,
        recovery_store=recovery_store,
        crash_guard=crash_guard,
        restored=restored,
        log_descriptions=log_descriptions,
    )
