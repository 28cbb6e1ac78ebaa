from __future__ import annotations

import logging

from realchat.realtime.session_manager import Credentials, Scheduler, SessionManager, TimerHandle, loop_scheduler
from realchat.store.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class TypingIndicator:
    def __init__(
        self,
        *,
        session: SessionManager,
        store: ConversationStore,
        credentials: Credentials,
        idle_ms: int = 1000,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._session = session
        self._store = store
        self._credentials = credentials
        self._idle_sec = idle_ms / 1000.0
        self._scheduler = scheduler or loop_scheduler
        self._conversation_id: str | None = None
        self._idle_timer: TimerHandle | None = None

    @property
    def typing_conversation_id(self) -> str | None:
        return self._conversation_id

    def input_changed(self, conversation_id: str, text: str) -> None:
        if not text:
            self.stop()
            return

        if self._conversation_id is not None and self._conversation_id != conversation_id:
            self.stop()

        if self._conversation_id is None:
            self._start(conversation_id)

        self._cancel_timer()
        self._idle_timer = self._scheduler(self._idle_sec, self.stop)

    def stop(self) -> None:
        self._cancel_timer()
        conversation_id = self._conversation_id
        if conversation_id is None:
            return
        self._conversation_id = None
        user = self._credentials.user
        if user is not None:
            self._store.remove_typing_user(conversation_id, user.id)
        self._session.send_typing_indicator(conversation_id, False)

    def _start(self, conversation_id: str) -> None:
        user = self._credentials.user
        if user is None:
            logger.debug("Typing ignored: no authenticated user")
            return
        self._conversation_id = conversation_id
        self._store.add_typing_user(conversation_id, user.id)
        self._session.send_typing_indicator(conversation_id, True)

    def _cancel_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None
