from __future__ import annotations

from loguru import logger

from assistant_chat.conversation.models import ConversationSnapshot
from assistant_chat.conversation.store import ConversationStore
from assistant_chat.recovery.store import RECOVERY_KEY, DurableStore


class CrashRecoveryBridge:
    def __init__(self, store: DurableStore, conversation: ConversationStore):
        self._store = store
        self._conversation = conversation
        self._restored = False

    def save(self) -> ConversationSnapshot:
        snapshot = self._conversation.snapshot()
        self._store.put(RECOVERY_KEY, snapshot.to_dict())
        logger.info(
            f"Saved recovery snapshot ({len(snapshot.messages)} messages, "
            f"{len(snapshot.current_partial_text)} partial chars, session={snapshot.session_id})"
        )
        return snapshot

    def pending_snapshot(self) -> ConversationSnapshot | None:
        try:
            payload = self._store.get(RECOVERY_KEY)
            if payload is None:
                return None
            return ConversationSnapshot.from_dict(payload)
        except (KeyError, TypeError, ValueError) as ex:
            logger.warning(f"Discarding unreadable recovery snapshot: {ex}")
            self._store.delete(RECOVERY_KEY)
            return None

    def has_snapshot(self) -> bool:
        return self.pending_snapshot() is not None

    def restore(self) -> bool:
        """Apply the saved snapshot once, then clear it."""
        if self._restored:
            return False
        snapshot = self.pending_snapshot()
        if snapshot is None:
            return False
        applied = self._conversation.restore(snapshot)
        self._store.delete(RECOVERY_KEY)
        self._restored = True
        return applied

    def discard(self) -> bool:
        return self._store.delete(RECOVERY_KEY)
