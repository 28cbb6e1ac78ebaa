from realchat.realtime.group_lifecycle import GroupLifecycleHandler
from realchat.realtime.router import MessageRouter
from realchat.realtime.session_manager import SessionManager
from realchat.realtime.state import ConnectionStatus
from realchat.realtime.typing_indicator import TypingIndicator

__all__ = [
    "ConnectionStatus",
    "GroupLifecycleHandler",
    "MessageRouter",
    "SessionManager",
    "TypingIndicator",
]
