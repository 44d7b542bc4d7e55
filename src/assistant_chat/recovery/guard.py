from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from loguru import logger

from assistant_chat.recovery.bridge import CrashRecoveryBridge
from assistant_chat.recovery.events import EventEmitter
from assistant_chat.recovery.store import HEARTBEAT_KEY, DurableStore


class CrashGuard:
    """Heartbeat plus save/restore plumbing around the recovery bridge.

    A heartbeat record is written while the app runs and removed on a clean
    shutdown, so a record found at boot means the previous run died.
    """

    def __init__(
        self,
        bridge: CrashRecoveryBridge,
        store: DurableStore,
        events: EventEmitter | None = None,
        *,
        interval_seconds: float = 1.0,
        stale_after_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self._bridge = bridge
        self._store = store
        self._events = events
        self._interval_seconds = max(0.05, interval_seconds)
        self._stale_after_seconds = max(self._interval_seconds, stale_after_seconds)
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is None:
            self.beat()
            self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._store.delete(HEARTBEAT_KEY)

    def beat(self) -> None:
        self._store.put(HEARTBEAT_KEY, {"at": self._clock()})

    def last_heartbeat(self) -> float | None:
        record = self._store.get(HEARTBEAT_KEY)
        if record is None:
            return None
        try:
            return float(record["at"])
        except (KeyError, TypeError, ValueError):
            return None

    def heartbeat_is_stale(self, now: float | None = None) -> bool:
        last = self.last_heartbeat()
        if last is None:
            return True
        current = self._clock() if now is None else now
        return current - last > self._stale_after_seconds

    def notify_abnormal_termination(self, reason: str) -> None:
        logger.warning(f"Abnormal termination signalled: {reason}")
        snapshot = self._bridge.save()
        self._emit(
            "recovery.saved",
            {
                "reason": reason,
                "message_count": len(snapshot.messages),
                "session_id": snapshot.session_id,
                "saved_at": snapshot.saved_at,
            },
        )

    def on_boot(self) -> bool:
        unclean = self.last_heartbeat() is not None
        if unclean:
            logger.warning("Previous run did not shut down cleanly")
            self._emit("recovery.unclean_shutdown", {"last_heartbeat": self.last_heartbeat()})

        if not self._bridge.has_snapshot():
            return False
        restored = self._bridge.restore()
        if restored:
            self._emit("recovery.restored", {"unclean_shutdown": unclean})
        return restored

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                self.beat()
            except Exception as ex:
                logger.warning(f"Heartbeat write failed: {ex}")

    def _emit(self, event_type: str, payload: dict) -> None:
        if self._events is None:
            return
        try:
            self._events.emit(event_type, payload)
        except Exception as ex:
            logger.warning(f"Failed to record {event_type} event: {ex}")
