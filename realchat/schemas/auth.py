from __future__ import annotations

from pydantic import BaseModel, Field

from realchat.schemas.users import UserIdentity


class RequestOTPRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)


class VerifyOTPRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    code: str = Field(min_length=1, max_length=16)
    name: str | None = None


class VerifyOTPResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None
    user_id: str


class UpdateProfileRequest(BaseModel):
    name: str | None = Field(default=None, max_length=64)
    display_name: str | None = Field(default=None, max_length=64, serialization_alias="displayName")
    language: str | None = Field(default=None, max_length=16)


class PersistedAuth(BaseModel):
    user: UserIdentity | None = None
    token: str | None = None
    refresh_token: str | None = None
