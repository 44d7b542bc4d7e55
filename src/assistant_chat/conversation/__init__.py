from assistant_chat.conversation.accumulator import MessageAccumulator
from assistant_chat.conversation.errors import (
    ConversationError,
    InvalidToolTransitionError,
    NoActiveSessionError,
    NotStreamingError,
    SessionBusyError,
    TransportError,
)
from assistant_chat.conversation.events import DecodeError, decode
from assistant_chat.conversation.ledger import ToolCallLedger
from assistant_chat.conversation.lifecycle import SessionLifecycleTracker
from assistant_chat.conversation.models import (
    ConversationSnapshot,
    ConversationView,
    LifecycleState,
    Message,
    MessageRole,
    PermissionRequest,
    ToolCall,
    ToolStatus,
)
from assistant_chat.conversation.store import ConversationStore

__all__ = [
    "ConversationError",
    "ConversationSnapshot",
    "ConversationStore",
    "ConversationView",
    "DecodeError",
    "InvalidToolTransitionError",
    "LifecycleState",
    "Message",
    "MessageAccumulator",
    "MessageRole",
    "NoActiveSessionError",
    "NotStreamingError",
    "PermissionRequest",
    "SessionBusyError",
    "SessionLifecycleTracker",
    "ToolCall",
    "ToolCallLedger",
    "ToolStatus",
    "TransportError",
    "decode",
]
