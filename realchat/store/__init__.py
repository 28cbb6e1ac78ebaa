from realchat.store.conversation_store import ConversationStore

__all__ = [
    "ConversationStore",
]
