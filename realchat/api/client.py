from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from time import perf_counter

import aiohttp
from pydantic import ValidationError

from realchat.core.errors import APIError, error_code_for_status, is_auth_critical_endpoint
from realchat.schemas.auth import RequestOTPRequest, UpdateProfileRequest, VerifyOTPRequest, VerifyOTPResponse
from realchat.schemas.conversations import Conversation, CreateDirectConversationRequest
from realchat.schemas.messages import Message, UploadedFile, classify_message_type
from realchat.schemas.users import PresenceSnapshot, UserIdentity, UserPresence, UserPublic

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


def _no_token() -> str | None:
    return None


def _error_message(payload: object, status: int) -> str:
    if isinstance(payload, Mapping):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return f"HTTP {status}"


def _clean_params(params: Mapping[str, object] | None) -> dict[str, str] | None:
    if not params:
        return None
    return {key: str(value) for key, value in params.items() if value is not None}


def normalize_history(raw: object) -> list[Message]:
    if not isinstance(raw, list):
        logger.warning("History response is not a list type=%s", type(raw).__name__)
        return []

    messages: list[Message] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        message_id = item.get("_id") or item.get("id")
        sender_id = item.get("sender_id")
        if not message_id or not sender_id:
            logger.debug("Skipping history entry without id or sender")
            continue
        files = item.get("files") or []
        try:
            messages.append(
                Message(
                    id=str(message_id),
                    sender_id=str(sender_id),
                    sender_name=item.get("sender_name") or item.get("sender_display_name") or str(sender_id),
                    content=item.get("content") or "",
                    timestamp=item.get("created_at"),
                    type=classify_message_type(files if isinstance(files, list) else []),
                    files=files,
                    content_lang=item.get("content_lang"),
                    reply_to=item.get("reply_to") or None,
                    reply_text=item.get("reply_text") or None,
                    reply_sender=item.get("reply_sender") or None,
                )
            )
        except ValidationError:
            logger.warning("Skipping invalid history entry id=%s", message_id)
    messages.reverse()
    return messages


def normalize_conversations(raw: object) -> list[Conversation]:
    if not isinstance(raw, list):
        logger.warning("Conversation list response is not a list type=%s", type(raw).__name__)
        return []
    conversations: list[Conversation] = []
    for item in raw:
        try:
            conversations.append(Conversation.model_validate(item))
        except ValidationError as exc:
            conversation_id = item.get("id") if isinstance(item, dict) else None
            logger.warning(
                "Dropping conversation id=%s from list: %s",
                conversation_id,
                exc.errors()[0]["msg"],
            )
    return conversations


class ApiClient:
    def __init__(
        self,
        *,
        base_url: str,
        token_provider: TokenProvider = _no_token,
        session: aiohttp.ClientSession | None = None,
        timeout_sec: float | None = None,
        on_auth_invalidated: Callable[[], None] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._on_auth_invalidated = on_auth_invalidated

    def set_token_provider(self, token_provider: TokenProvider) -> None:
        self._token_provider = token_provider

    def set_auth_invalidated_callback(self, callback: Callable[[], None] | None) -> None:
        self._on_auth_invalidated = callback

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, object] | None = None,
        json_body: object | None = None,
        data: aiohttp.FormData | None = None,
    ) -> object:
        url = f"{self.base_url}{endpoint}"
        headers: dict[str, str] = {}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        start = perf_counter()
        logger.debug("HTTP request started method=%s endpoint=%s", method, endpoint)
        try:
            async with self.session.request(
                method,
                url,
                params=_clean_params(params),
                json=json_body,
                data=data,
                headers=headers,
            ) as response:
                status = response.status
                payload = await self._read_payload(response)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("HTTP request failed method=%s endpoint=%s error=%s", method, endpoint, exc)
            raise APIError(
                status_code=0,
                code="network_error",
                message=f"Network error: {exc}",
            ) from exc

        duration_ms = (perf_counter() - start) * 1000
        logger.debug(
            "HTTP request completed method=%s endpoint=%s status=%s duration_ms=%.2f",
            method,
            endpoint,
            status,
            duration_ms,
        )

        if status >= 400:
            if status == 401:
                logger.warning("API call failed with 401 endpoint=%s", endpoint)
                if is_auth_critical_endpoint(endpoint):
                    logger.warning("Critical auth endpoint failed - invalidating session")
                    if self._on_auth_invalidated is not None:
                        self._on_auth_invalidated()
            raise APIError(
                status_code=status,
                code=error_code_for_status(status),
                message=_error_message(payload, status),
                details=payload,
            )
        return payload

    @staticmethod
    async def _read_payload(response: aiohttp.ClientResponse) -> object:
        text = await response.text()
        if not text:
            return None
        if "application/json" in response.headers.get("Content-Type", ""):
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Response declared JSON but failed to decode")
        return text

    # auth

    async def request_otp(self, email: str) -> object:
        body = RequestOTPRequest(email=email)
        return await self.request("POST", "/auth/request-otp", json_body=body.model_dump())

    async def verify_otp(self, email: str, code: str, name: str | None = None) -> VerifyOTPResponse:
        body = VerifyOTPRequest(email=email, code=code, name=name)
        payload = await self.request("POST", "/auth/verify-otp", json_body=body.model_dump(exclude_none=True))
        return VerifyOTPResponse.model_validate(payload)

    async def get_me(self) -> UserIdentity:
        payload = await self.request("GET", "/me")
        return UserIdentity.model_validate(payload)

    async def update_me(self, updates: UpdateProfileRequest) -> object:
        return await self.request("PUT", "/me", json_body=updates.model_dump(exclude_none=True, by_alias=True))

    # conversations

    async def get_conversations(self) -> list[Conversation]:
        logger.debug("Fetching conversations")
        payload = await self.request("GET", "/conversations")
        conversations = normalize_conversations(payload)
        logger.debug("Loaded conversations count=%s", len(conversations))
        return conversations

    async def create_dm_conversation(self, email: str) -> Conversation:
        body = CreateDirectConversationRequest(user_email=email)
        payload = await self.request("POST", "/conversations/dm", json_body=body.model_dump(by_alias=True))
        try:
            return Conversation.model_validate(payload)
        except ValidationError as exc:
            raise APIError(
                status_code=200,
                code="invalid_response",
                message="Conversation payload is invalid",
                details=exc.errors(),
            ) from exc

    async def delete_conversation(self, conversation_id: str) -> None:
        logger.debug("Deleting conversation conversation_id=%s", conversation_id)
        await self.request("DELETE", f"/conversations/{conversation_id}")

    # history

    async def get_dm_history(self, other_user_id: str, *, limit: int = 50, offset: int = 0) -> list[Message]:
        payload = await self.request(
            "GET",
            "/messages/dm",
            params={"user_id": other_user_id, "limit": limit, "offset": offset},
        )
        return normalize_history(payload)

    async def get_group_history(self, group_id: str, *, limit: int = 50, offset: int = 0) -> list[Message]:
        payload = await self.request(
            "GET",
            "/messages/group",
            params={"group_id": group_id, "limit": limit, "offset": offset},
        )
        return normalize_history(payload)

    async def get_messages(self, conversation_id: str) -> list[Message]:
        return await self.get_group_history(conversation_id, limit=100)

    # users and presence

    async def search_users(self, query: str) -> list[UserPublic]:
        payload = await self.request("GET", "/users/search", params={"q": query})
        if not isinstance(payload, list):
            return []
        users: list[UserPublic] = []
        for item in payload:
            try:
                users.append(UserPublic.model_validate(item))
            except ValidationError:
                logger.debug("Skipping invalid user search entry")
        return users

    async def get_presence(self) -> PresenceSnapshot:
        payload = await self.request("GET", "/presence")
        return PresenceSnapshot.model_validate(payload or {})

    async def get_user_presence(self, user_id: str) -> UserPresence:
        payload = await self.request("GET", f"/presence/{user_id}")
        return UserPresence.model_validate(payload)

    # files

    async def upload_file(self, filename: str, content: bytes, *, content_type: str = "application/octet-stream") -> UploadedFile:
        form = aiohttp.FormData()
        form.add_field("file", content, filename=filename, content_type=content_type)
        payload = await self.request("POST", "/upload", data=form)
        return UploadedFile.model_validate(payload)

    async def health_check(self) -> object:
        return await self.request("GET", "/")
