from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from pydantic import ValidationError

from realchat.core.errors import APIError
from realchat.schemas.auth import PersistedAuth, UpdateProfileRequest, VerifyOTPResponse
from realchat.schemas.users import UserIdentity

logger = logging.getLogger(__name__)

AuthListener = Callable[["AuthStore"], None]


class AuthApi(Protocol):
    async def request_otp(self, email: str) -> object: ...

    async def verify_otp(self, email: str, code: str, name: str | None = None) -> VerifyOTPResponse: ...

    async def get_me(self) -> UserIdentity: ...

    async def update_me(self, updates: UpdateProfileRequest) -> object: ...


class AuthPersister(Protocol):
    def load(self) -> dict[str, object] | None: ...

    def save(self, payload: dict[str, object]) -> None: ...

    def clear(self) -> None: ...


class AuthStore:
    def __init__(self, *, api: AuthApi, persister: AuthPersister | None = None) -> None:
        self._api = api
        self._persister = persister
        self._user: UserIdentity | None = None
        self._token: str | None = None
        self._refresh_token: str | None = None
        self._listeners: list[AuthListener] = []

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None and self._user is not None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    @property
    def user(self) -> UserIdentity | None:
        return self._user

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, *, user: UserIdentity | None, token: str | None, refresh_token: str | None) -> None:
        self._user = user
        self._token = token
        self._refresh_token = refresh_token
        if self._persister is not None:
            if token is None:
                self._persister.clear()
            else:
                state = PersistedAuth(user=user, token=token, refresh_token=refresh_token)
                self._persister.save(state.model_dump(mode="json"))
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Auth listener failed listener=%r", listener)

    async def initialize(self) -> bool:
        raw = self._persister.load() if self._persister is not None else None
        if not raw:
            logger.debug("No persisted credentials")
            return False
        try:
            persisted = PersistedAuth.model_validate(raw)
        except ValidationError:
            logger.warning("Persisted credentials are invalid, discarding")
            self.logout()
            return False
        if not persisted.token:
            return False

        self._token = persisted.token
        self._refresh_token = persisted.refresh_token
        try:
            user = await self._api.get_me()
        except APIError as exc:
            if exc.is_unauthorized:
                logger.warning("Stored token rejected by server, logging out")
                self.logout()
                return False
            if persisted.user is None:
                logger.warning("Could not validate stored token status=%s and no identity cached", exc.status_code)
                self._token = None
                self._refresh_token = None
                return False
            logger.warning("Could not validate stored token status=%s, keeping cached identity", exc.status_code)
            user = persisted.user

        self._set(user=user, token=persisted.token, refresh_token=persisted.refresh_token)
        logger.info("Session restored user_id=%s", user.id)
        return True

    async def request_otp(self, email: str) -> None:
        await self._api.request_otp(email)
        logger.info("OTP requested")

    async def verify_otp(self, email: str, code: str, name: str | None = None) -> UserIdentity:
        tokens = await self._api.verify_otp(email, code, name)
        # /me is called with the fresh token.
        self._token = tokens.access_token
        try:
            user = await self._api.get_me()
        except APIError as exc:
            if exc.is_unauthorized:
                self.logout()
                raise
            logger.warning("Profile fetch after login failed status=%s", exc.status_code)
            user = UserIdentity(id=tokens.user_id, email=email, name=name)

        self._set(user=user, token=tokens.access_token, refresh_token=tokens.refresh_token)
        logger.info("Signed in user_id=%s", user.id)
        return user

    async def update_profile(self, updates: UpdateProfileRequest) -> UserIdentity:
        if not self.is_authenticated:
            raise APIError(status_code=401, code="unauthorized", message="Not signed in")
        await self._api.update_me(updates)
        user = await self._api.get_me()
        self._set(user=user, token=self._token, refresh_token=self._refresh_token)
        return user

    def logout(self) -> None:
        was_authenticated = self.is_authenticated
        self._set(user=None, token=None, refresh_token=None)
        if was_authenticated:
            logger.info("Signed out")
