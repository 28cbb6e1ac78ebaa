from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from realchat.core.errors import APIError
from realchat.realtime.protocol import GroupCreatedFrame, JoinedGroupFrame
from realchat.schemas.conversations import Conversation
from realchat.store.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class ConversationSource(Protocol):
    async def get_conversations(self) -> list[Conversation]: ...


class GroupLifecycleHandler:
    def __init__(self, *, api: ConversationSource, store: ConversationStore) -> None:
        self._api = api
        self._store = store
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def handle(self, frame: GroupCreatedFrame | JoinedGroupFrame) -> asyncio.Task[bool]:
        logger.info("Group lifecycle frame type=%s group_id=%s", frame.type, frame.group_id)
        task = asyncio.get_running_loop().create_task(self.refresh_conversations(reason=frame.type))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def refresh_conversations(self, *, reason: str = "manual") -> bool:
        try:
            conversations = await self._api.get_conversations()
        except APIError as exc:
            logger.error(
                "Failed to refetch conversations reason=%s status=%s code=%s",
                reason,
                exc.status_code,
                exc.code,
            )
            return False
        self._store.set_conversations(conversations)
        logger.info("Refetched conversations reason=%s count=%s", reason, len(conversations))
        return True

    async def join(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
