from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine

from pydantic import ValidationError
from sqlalchemy.engine import Engine

from realchat.api.client import ApiClient
from realchat.core.logging import configure_logging
from realchat.core.settings import Settings, get_settings
from realchat.db.session import create_session_factory, create_state_engine, init_db
from realchat.realtime import ConnectionStatus, GroupLifecycleHandler, MessageRouter, SessionManager, TypingIndicator
from realchat.realtime.session_manager import Scheduler
from realchat.realtime.transport import AiohttpTransport, Transport, TransportFactory
from realchat.schemas.conversations import Conversation
from realchat.schemas.messages import SendMessageRequest
from realchat.schemas.users import UserIdentity, UserPublic
from realchat.services import conversation_service
from realchat.services.auth_service import AuthStore
from realchat.services.state_service import AUTH_STATE_KEY, CONVERSATIONS_STATE_KEY, StatePersister
from realchat.store import ConversationStore

logger = logging.getLogger(__name__)


class ChatClient:
    def __init__(
        self,
        settings: Settings,
        *,
        api: ApiClient | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        persist: bool = True,
    ) -> None:
        self.settings = settings
        self._engine: Engine | None = None
        store_persister: StatePersister | None = None
        auth_persister: StatePersister | None = None
        if persist:
            self._engine = create_state_engine(settings.state_database_url)
            init_db(self._engine)
            session_factory = create_session_factory(self._engine)
            store_persister = StatePersister(session_factory=session_factory, key=CONVERSATIONS_STATE_KEY)
            auth_persister = StatePersister(session_factory=session_factory, key=AUTH_STATE_KEY)

        self.store = ConversationStore(persister=store_persister)
        if store_persister is not None:
            snapshot = store_persister.load()
            if snapshot:
                self.store.restore(snapshot)

        self.api = api or ApiClient(base_url=settings.api_base_url, timeout_sec=settings.api_timeout_sec)
        self.auth = AuthStore(api=self.api, persister=auth_persister)
        self.api.set_token_provider(lambda: self.auth.token)
        self.api.set_auth_invalidated_callback(self.auth.logout)

        self.session = SessionManager(
            credentials=self.auth,
            transport_factory=transport_factory or self._open_transport,
            settings=settings,
            scheduler=scheduler,
        )
        self.group_handler = GroupLifecycleHandler(api=self.api, store=self.store)
        self.router = MessageRouter(
            session=self.session,
            store=self.store,
            credentials=self.auth,
            group_handler=self.group_handler,
            default_language=settings.language,
        )
        self.session.set_frame_handler(self.router.handle_frame)
        self.typing = TypingIndicator(
            session=self.session,
            store=self.store,
            credentials=self.auth,
            idle_ms=settings.typing_idle_ms,
            scheduler=scheduler,
        )

        self._token: str | None = None
        self._background: set[asyncio.Task[object]] = set()
        self._unsubscribe_auth = self.auth.subscribe(self._on_auth_changed)

    async def _open_transport(self, url: str) -> Transport:
        return await AiohttpTransport.open(url, session=self.api.session)

    @property
    def status(self) -> ConnectionStatus:
        return self.session.status

    @property
    def user(self) -> UserIdentity | None:
        return self.auth.user

    def _spawn(self, coro: Coroutine[object, object, object]) -> asyncio.Task[object]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_auth_changed(self, auth: AuthStore) -> None:
        token = auth.token if auth.is_authenticated else None
        previous = self._token
        if token == previous:
            return
        self._token = token

        if token is not None and previous is None:
            logger.info("Authenticated, starting realtime session")
            self.session.connect()
            self._spawn(self.load_conversations())
            return

        if token is not None:
            logger.info("Credentials renewed, resuming realtime session")
            self._spawn(self._resume_session())
            return

        logger.info("Signed out, stopping realtime session")
        self.typing.stop()
        self.store.clear()
        self._spawn(self.session.disconnect())

    async def _resume_session(self) -> None:
        if self.session.status == ConnectionStatus.AUTH_FAILED:
            await self.session.disconnect()
        self.session.connect()

    async def start(self) -> bool:
        return await self.auth.initialize()

    async def request_otp(self, email: str) -> None:
        await self.auth.request_otp(email)

    async def login(self, email: str, code: str, name: str | None = None) -> UserIdentity:
        return await self.auth.verify_otp(email, code, name)

    async def logout(self) -> None:
        self.auth.logout()
        await self.session.disconnect()

    async def load_conversations(self) -> bool:
        user = self.auth.user
        if user is None:
            return False
        return await conversation_service.load_conversations(self.api, self.store, user=user)

    async def search_users(self, query: str) -> list[UserPublic]:
        return await self.api.search_users(query)

    async def open_direct_conversation(self, peer: UserPublic) -> Conversation | None:
        user = self.auth.user
        if user is None:
            return None
        return await conversation_service.open_direct_conversation(
            self.api,
            self.store,
            user=user,
            email=peer.email,
            name=peer.name,
            peer_id=peer.id,
            is_online=peer.is_online,
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        await conversation_service.delete_conversation(self.api, self.store, conversation_id)

    def send_message(
        self,
        conversation_id: str,
        text: str = "",
        *,
        files: list[str] | None = None,
        reply_to: str | None = None,
        reply_text: str | None = None,
        reply_sender: str | None = None,
    ) -> bool:
        try:
            request = SendMessageRequest(
                text=text,
                files=files or [],
                reply_to=reply_to,
                reply_text=reply_text,
                reply_sender=reply_sender,
            )
        except ValidationError:
            logger.warning("Rejected empty or oversized message conversation_id=%s", conversation_id)
            return False
        sent = self.router.send_message(conversation_id, request)
        if sent:
            self.typing.stop()
        return sent

    def create_group(self, name: str, members: list[str]) -> bool:
        return self.router.create_group(name, members)

    def input_changed(self, conversation_id: str, text: str) -> None:
        self.typing.input_changed(conversation_id, text)

    async def close(self) -> None:
        self._unsubscribe_auth()
        self.typing.stop()
        await self.session.disconnect()
        await self.group_handler.join()
        if self._background:
            results = await asyncio.gather(*list(self._background), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Background task failed during close error=%s", result)
        await self.api.close()
        if self._engine is not None:
            self._engine.dispose()
        logger.info("Client closed")


def create_client(settings: Settings | None = None) -> ChatClient:
    settings = settings or get_settings()
    configure_logging(debug=settings.debug, app_name=settings.app_name)
    logger.debug("Creating client for api_base_url=%s", settings.api_base_url)
    return ChatClient(settings)
