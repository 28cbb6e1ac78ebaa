from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class UserIdentity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "user_id"))
    email: str | None = None
    name: str | None = None
    display_name: str | None = Field(default=None, validation_alias=AliasChoices("display_name", "displayName"))
    language: str | None = None
    locale: str | None = None
    is_verified: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.name or self.email or self.id


class UserPublic(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    name: str | None = None
    avatar: str | None = None
    is_online: bool = Field(default=False, validation_alias=AliasChoices("isOnline", "is_online"))

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return self.email.split("@", 1)[0]


class PresenceSnapshot(BaseModel):
    online: list[str] = Field(default_factory=list)


class UserPresence(BaseModel):
    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    online: bool = False
