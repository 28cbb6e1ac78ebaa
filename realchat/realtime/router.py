from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError

from realchat.realtime.group_lifecycle import GroupLifecycleHandler
from realchat.realtime.protocol import (
    ErrorFrame,
    GroupCreatedFrame,
    InboundFrame,
    JoinedGroupFrame,
    MessageFrame,
    SendMessageFrame,
    UnknownFrame,
    create_group_frame,
    dm_message_frame,
    group_message_frame,
)
from realchat.realtime.session_manager import Credentials, SessionManager
from realchat.schemas.conversations import Conversation
from realchat.schemas.enums import ConversationType, MessageStatus
from realchat.schemas.messages import Message, SendMessageRequest, classify_message_type
from realchat.schemas.users import UserIdentity
from realchat.store.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MessageRouter:
    def __init__(
        self,
        *,
        session: SessionManager,
        store: ConversationStore,
        credentials: Credentials,
        group_handler: GroupLifecycleHandler | None = None,
        default_language: str = "en",
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self._store = store
        self._credentials = credentials
        self._group_handler = group_handler
        self._default_language = default_language
        self._id_factory = id_factory
        self._clock = clock

    def send_message(self, conversation_id: str, message: SendMessageRequest) -> bool:
        if not self._session.is_connected:
            logger.warning("Cannot send message: not connected")
            return False

        user = self._credentials.user
        if user is None:
            logger.warning("Cannot send message: no authenticated user")
            return False

        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            logger.error("Conversation not found conversation_id=%s", conversation_id)
            return False

        client_message_id = self._id_factory()
        frame = self._outbound_frame(conversation, user, message, client_message_id)
        if frame is None:
            return False

        optimistic = Message(
            id=client_message_id,
            sender_id=user.id,
            sender_name=user.label,
            content=message.text,
            timestamp=self._clock(),
            type=classify_message_type(message.files),
            files=list(message.files),
            status=MessageStatus.SENDING,
            reply_to=message.reply_to,
            reply_text=message.reply_text,
            reply_sender=message.reply_sender,
            client_message_id=client_message_id,
        )
        self._store.add_message(conversation_id, optimistic)

        if not self._session.send_frame(frame):
            logger.error("Failed to queue message conversation_id=%s", conversation_id)
            self._store.update_message(conversation_id, optimistic.id, status=MessageStatus.FAILED)
            return False

        logger.debug(
            "Message sent chat_type=%s conversation_id=%s client_message_id=%s",
            frame.chat_type,
            conversation_id,
            client_message_id,
        )
        return True

    def _outbound_frame(
        self,
        conversation: Conversation,
        user: UserIdentity,
        message: SendMessageRequest,
        client_message_id: str,
    ) -> SendMessageFrame | None:
        source_lang = user.language or self._default_language
        if conversation.type == ConversationType.DM:
            other_user_id = conversation.other_participant(user.id)
            if other_user_id is None:
                logger.error("Could not find other user in dm conversation_id=%s", conversation.id)
                return None
            return dm_message_frame(
                to_user=other_user_id,
                conversation_id=conversation.id,
                text=message.text,
                source_lang=source_lang,
                files=message.files,
                client_message_id=client_message_id,
            )
        if conversation.type == ConversationType.GROUP:
            return group_message_frame(
                group_id=conversation.id,
                text=message.text,
                source_lang=source_lang,
                files=message.files,
                client_message_id=client_message_id,
            )
        logger.error("Unknown conversation type=%s conversation_id=%s", conversation.type, conversation.id)
        return None

    def create_group(self, name: str, members: list[str]) -> bool:
        if not self._session.is_connected:
            logger.warning("Cannot create group: not connected")
            return False
        try:
            frame = create_group_frame(name=name, members=members)
        except ValidationError:
            logger.error("Rejected group creation request with empty name")
            return False
        if not self._session.send_frame(frame):
            return False
        logger.info("Group creation requested name=%s members=%s", frame.name, len(frame.members))
        return True

    def handle_frame(self, frame: InboundFrame) -> None:
        if isinstance(frame, MessageFrame):
            self._route_message(frame)
            return

        if isinstance(frame, (GroupCreatedFrame, JoinedGroupFrame)):
            if self._group_handler is None:
                logger.info("Group frame ignored type=%s group_id=%s", frame.type, frame.group_id)
                return
            self._group_handler.handle(frame)
            return

        if isinstance(frame, ErrorFrame):
            logger.error("Server reported error=%s", frame.error)
            return

        if isinstance(frame, UnknownFrame):
            logger.info("Unknown frame type=%s dropped", frame.type)
            return

    def resolve_conversation_id(self, frame: MessageFrame) -> str | None:
        if frame.chat_type == ConversationType.DM:
            if self._is_own(frame) and frame.conversation_id:
                echoed = self._store.get_conversation(frame.conversation_id)
                if echoed is not None and echoed.is_dm:
                    return echoed.id
            conversation = self._store.find_dm_with(frame.from_user)
            return conversation.id if conversation is not None else None
        return frame.group_id or None

    def _is_own(self, frame: MessageFrame) -> bool:
        user = self._credentials.user
        return user is not None and frame.from_user == user.id

    def _route_message(self, frame: MessageFrame) -> None:
        conversation_id = self.resolve_conversation_id(frame)
        if conversation_id is None:
            logger.warning(
                "No conversation found for message chat_type=%s from_user=%s",
                frame.chat_type,
                frame.from_user,
            )
            return

        if frame.client_message_id and self._confirm_pending(conversation_id, frame):
            return

        inbound = Message(
            id=self._id_factory(),
            sender_id=frame.from_user,
            sender_name=frame.sender_name or frame.from_user,
            content=frame.text,
            timestamp=self._clock(),
            type=classify_message_type(frame.files),
            files=list(frame.files),
            client_message_id=frame.client_message_id,
            content_lang=frame.lang,
        )
        self._store.add_message(conversation_id, inbound)
        logger.debug("Inbound message stored conversation_id=%s from_user=%s", conversation_id, frame.from_user)

    def _confirm_pending(self, conversation_id: str, frame: MessageFrame) -> bool:
        if not self._is_own(frame):
            return False
        pending = self._store.find_message_by_client_id(conversation_id, frame.client_message_id or "")
        if pending is None or pending.status != MessageStatus.SENDING:
            return False
        self._store.update_message(
            conversation_id,
            pending.id,
            status=None,
            content_lang=frame.lang or pending.content_lang,
        )
        logger.debug(
            "Optimistic message confirmed conversation_id=%s client_message_id=%s",
            conversation_id,
            frame.client_message_id,
        )
        return True
