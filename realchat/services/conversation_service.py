from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Protocol

from realchat.core.errors import APIError
from realchat.schemas.conversations import Conversation
from realchat.schemas.enums import ConversationType
from realchat.schemas.messages import Message
from realchat.schemas.users import UserIdentity
from realchat.store.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

WELCOME_CONVERSATION_ID = "1"
WELCOME_BOT_ID = "bot"
WELCOME_BOT_NAME = "Welcome Bot"


class ConversationApi(Protocol):
    async def get_conversations(self) -> list[Conversation]: ...

    async def get_dm_history(self, other_user_id: str, *, limit: int = 50, offset: int = 0) -> list[Message]: ...

    async def get_messages(self, conversation_id: str) -> list[Message]: ...

    async def create_dm_conversation(self, email: str) -> Conversation: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...


def _welcome_conversation(user: UserIdentity, now: datetime) -> tuple[Conversation, Message]:
    greeting_name = user.name or user.email or user.id
    conversation = Conversation(
        id=WELCOME_CONVERSATION_ID,
        type=ConversationType.DM,
        name=WELCOME_BOT_NAME,
        participants=[user.id, WELCOME_BOT_ID],
        is_online=True,
        last_message=f"Welcome to RealChat, {greeting_name}!",
        last_message_time=now,
        unread_count=1,
    )
    message = Message(
        id=WELCOME_CONVERSATION_ID,
        sender_id=WELCOME_BOT_ID,
        sender_name=WELCOME_BOT_NAME,
        content=(
            f"Hello {greeting_name}! Welcome to RealChat. This is your personal chat space. "
            "Start by creating a new conversation or joining a group!"
        ),
        timestamp=now,
    )
    return conversation, message


async def _load_history(api: ConversationApi, conversation: Conversation, user: UserIdentity) -> list[Message]:
    if conversation.is_dm:
        other_user_id = conversation.other_participant(user.id)
        if other_user_id is None:
            return []
        return await api.get_dm_history(other_user_id)
    return await api.get_messages(conversation.id)


async def load_conversations(api: ConversationApi, store: ConversationStore, *, user: UserIdentity) -> bool:
    try:
        conversations = await api.get_conversations()
    except APIError as exc:
        logger.warning("Conversations unavailable, keeping existing state status=%s", exc.status_code)
        return False

    if not conversations:
        if not store.conversations:
            logger.debug("Creating welcome conversation")
            welcome, greeting = _welcome_conversation(user, datetime.now(UTC))
            store.set_conversations([welcome])
            store.set_messages(welcome.id, [greeting])
            store.set_active_conversation(welcome.id)
        return True

    store.set_conversations(conversations)
    for conversation in store.conversations:
        try:
            history = await _load_history(api, conversation, user)
        except APIError as exc:
            logger.warning(
                "Failed to load messages conversation_id=%s status=%s",
                conversation.id,
                exc.status_code,
            )
            history = []
        store.set_messages(conversation.id, history)

    loaded = store.conversations
    if loaded:
        store.set_active_conversation(loaded[0].id)
    logger.info("Conversations loaded count=%s", len(loaded))
    return True


async def open_direct_conversation(
    api: ConversationApi,
    store: ConversationStore,
    *,
    user: UserIdentity,
    email: str,
    name: str | None = None,
    peer_id: str | None = None,
    is_online: bool = False,
) -> Conversation:
    try:
        conversation = await api.create_dm_conversation(email)
    except APIError as exc:
        logger.error("Failed to create dm conversation status=%s, using local conversation", exc.status_code)
        conversation = Conversation(
            id=f"dm-{uuid.uuid4()}",
            type=ConversationType.DM,
            name=name or email.split("@", 1)[0],
            participants=[user.id, peer_id or email],
            is_online=is_online,
            last_message_time=datetime.now(UTC),
        )

    stored = store.add_conversation(conversation)
    store.set_active_conversation(stored.id)
    logger.info("Direct conversation opened conversation_id=%s", stored.id)
    return stored


async def delete_conversation(api: ConversationApi, store: ConversationStore, conversation_id: str) -> None:
    await api.delete_conversation(conversation_id)
    store.remove_conversation(conversation_id)
    logger.info("Conversation deleted conversation_id=%s", conversation_id)
