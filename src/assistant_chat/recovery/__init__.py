from assistant_chat.recovery.bridge import CrashRecoveryBridge
from assistant_chat.recovery.events import EventEmitter
from assistant_chat.recovery.guard import CrashGuard
from assistant_chat.recovery.store import DurableStore

__all__ = [
    "CrashGuard",
    "CrashRecoveryBridge",
    "DurableStore",
    "EventEmitter",
]
