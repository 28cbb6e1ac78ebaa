from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from pydantic import ValidationError

from realchat.schemas.conversations import Conversation
from realchat.schemas.messages import Message

logger = logging.getLogger(__name__)

Listener = Callable[["ConversationStore"], None]


class SnapshotPersister(Protocol):
    def save(self, payload: dict[str, object]) -> None: ...


class ConversationStore:
    def __init__(self, *, persister: SnapshotPersister | None = None) -> None:
        self._conversations: list[Conversation] = []
        self._messages: dict[str, list[Message]] = {}
        self._active_conversation_id: str | None = None
        self._typing_users: dict[str, list[str]] = {}
        self._listeners: list[Listener] = []
        self._persister = persister

    # reads

    @property
    def conversations(self) -> list[Conversation]:
        return list(self._conversations)

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_conversation_id

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def messages(self, conversation_id: str) -> list[Message]:
        return list(self._messages.get(conversation_id, []))

    def all_messages(self) -> dict[str, list[Message]]:
        return {conversation_id: list(items) for conversation_id, items in self._messages.items()}

    def typing_users(self, conversation_id: str) -> list[str]:
        return list(self._typing_users.get(conversation_id, []))

    def find_dm_with(self, user_id: str) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.is_dm and user_id in conversation.participants:
                return conversation
        return None

    def find_dm_pair(self, participants: Iterable[str]) -> Conversation | None:
        pair = frozenset(participants)
        for conversation in self._conversations:
            if conversation.is_dm and conversation.participant_pair() == pair:
                return conversation
        return None

    def find_message_by_client_id(self, conversation_id: str, client_message_id: str) -> Message | None:
        for message in self._messages.get(conversation_id, []):
            if message.client_message_id == client_message_id:
                return message
        return None

    # listeners

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, *, persist: bool = True) -> None:
        if persist and self._persister is not None:
            self._persister.save(self.snapshot())
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Store listener failed listener=%r", listener)

    # conversations

    def set_conversations(self, conversations: Iterable[Conversation]) -> None:
        accepted: list[Conversation] = []
        seen_ids: set[str] = set()
        seen_pairs: set[frozenset[str]] = set()
        for conversation in conversations:
            if conversation.id in seen_ids:
                logger.warning("Dropping duplicate conversation id=%s", conversation.id)
                continue
            if conversation.is_dm:
                pair = conversation.participant_pair()
                if pair in seen_pairs:
                    logger.warning("Dropping duplicate dm conversation id=%s", conversation.id)
                    continue
                seen_pairs.add(pair)
            seen_ids.add(conversation.id)
            accepted.append(conversation)
        self._conversations = accepted
        logger.debug("Conversations replaced count=%s", len(accepted))
        self._changed()

    def add_conversation(self, conversation: Conversation) -> Conversation:
        for index, existing in enumerate(self._conversations):
            if existing.id == conversation.id:
                self._conversations[index] = conversation
                self._changed()
                return conversation

        if conversation.is_dm:
            existing_dm = self.find_dm_pair(conversation.participants)
            if existing_dm is not None:
                logger.debug(
                    "Dm pair already present existing_id=%s rejected_id=%s",
                    existing_dm.id,
                    conversation.id,
                )
                return existing_dm

        self._conversations.insert(0, conversation)
        logger.debug("Conversation added id=%s type=%s", conversation.id, conversation.type)
        self._changed()
        return conversation

    def remove_conversation(self, conversation_id: str) -> None:
        remaining = [conversation for conversation in self._conversations if conversation.id != conversation_id]
        if len(remaining) == len(self._conversations):
            return
        self._conversations = remaining
        self._messages.pop(conversation_id, None)
        self._typing_users.pop(conversation_id, None)
        if self._active_conversation_id == conversation_id:
            self._active_conversation_id = remaining[0].id if remaining else None
        logger.debug("Conversation removed id=%s", conversation_id)
        self._changed()

    def add_user_to_conversation(self, conversation_id: str, user_id: str) -> None:
        for index, conversation in enumerate(self._conversations):
            if conversation.id != conversation_id:
                continue
            if user_id in conversation.participants:
                return
            self._conversations[index] = conversation.model_copy(
                update={"participants": [*conversation.participants, user_id]}
            )
            self._changed()
            return

    def set_active_conversation(self, conversation_id: str | None) -> None:
        self._active_conversation_id = conversation_id
        self._changed()

    # messages

    def add_message(self, conversation_id: str, message: Message) -> None:
        self._messages.setdefault(conversation_id, []).append(message)
        self._changed()

    def set_messages(self, conversation_id: str, messages: Iterable[Message]) -> None:
        self._messages[conversation_id] = list(messages)
        self._changed()

    def update_message(self, conversation_id: str, message_id: str, **updates: object) -> Message | None:
        items = self._messages.get(conversation_id)
        if not items:
            return None
        for index, message in enumerate(items):
            if message.id == message_id:
                updated = message.model_copy(update=updates)
                items[index] = updated
                self._changed()
                return updated
        return None

    def mark_as_read(self, conversation_id: str, message_id: str, user_id: str) -> None:
        message = next((item for item in self._messages.get(conversation_id, []) if item.id == message_id), None)
        if message is None or user_id in message.read_by:
            return
        self.update_message(conversation_id, message_id, read_by=[*message.read_by, user_id])

    # typing

    def add_typing_user(self, conversation_id: str, user_id: str) -> None:
        users = self._typing_users.setdefault(conversation_id, [])
        if user_id in users:
            return
        users.append(user_id)
        self._changed(persist=False)

    def remove_typing_user(self, conversation_id: str, user_id: str) -> None:
        users = self._typing_users.get(conversation_id)
        if not users or user_id not in users:
            return
        users.remove(user_id)
        if not users:
            self._typing_users.pop(conversation_id, None)
        self._changed(persist=False)

    # lifecycle

    def clear(self) -> None:
        self._conversations = []
        self._messages = {}
        self._active_conversation_id = None
        self._typing_users = {}
        self._changed()

    def snapshot(self) -> dict[str, object]:
        return {
            "conversations": [conversation.model_dump(mode="json", by_alias=True) for conversation in self._conversations],
            "messages": {
                conversation_id: [message.model_dump(mode="json", by_alias=True) for message in items]
                for conversation_id, items in self._messages.items()
            },
            "activeConversationId": self._active_conversation_id,
        }

    def restore(self, snapshot: dict[str, object]) -> None:
        conversations: list[Conversation] = []
        for raw in snapshot.get("conversations") or []:
            try:
                conversations.append(Conversation.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping invalid persisted conversation")

        messages: dict[str, list[Message]] = {}
        raw_messages = snapshot.get("messages") or {}
        if isinstance(raw_messages, dict):
            for conversation_id, items in raw_messages.items():
                restored: list[Message] = []
                for raw in items or []:
                    try:
                        restored.append(Message.model_validate(raw))
                    except ValidationError:
                        logger.warning("Skipping invalid persisted message conversation_id=%s", conversation_id)
                messages[conversation_id] = restored

        active_id = snapshot.get("activeConversationId")
        self._conversations = conversations
        self._messages = messages
        self._active_conversation_id = active_id if isinstance(active_id, str) else None
        self._typing_users = {}
        logger.info("Store restored conversations=%s", len(conversations))
        self._changed(persist=False)
