from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from realchat.schemas.enums import ConversationType


class Conversation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    type: ConversationType
    name: str = ""
    participants: list[str] = Field(default_factory=list)
    is_online: bool = False
    last_message: str | None = None
    last_message_time: datetime | None = None
    unread_count: int = Field(default=0, ge=0)

    @field_validator("participants", mode="before")
    @classmethod
    def normalize_participants(cls, value: object) -> object:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        return list(dict.fromkeys(item for item in value if isinstance(item, str) and item))

    @field_validator("last_message", mode="before")
    @classmethod
    def stringify_last_message(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, dict):
            content = value.get("content") or value.get("text")
            return content if isinstance(content, str) else None
        return None

    @model_validator(mode="after")
    def check_participants(self) -> Conversation:
        if self.type == ConversationType.DM and len(self.participants) != 2:
            raise ValueError("dm conversations must have exactly two participants")
        if self.type == ConversationType.GROUP and not self.participants:
            raise ValueError("group conversations must have at least one participant")
        return self

    @property
    def is_dm(self) -> bool:
        return self.type == ConversationType.DM

    def other_participant(self, user_id: str) -> str | None:
        for participant in self.participants:
            if participant != user_id:
                return participant
        return None

    def participant_pair(self) -> frozenset[str]:
        return frozenset(self.participants)


class CreateDirectConversationRequest(BaseModel):
    user_email: str = Field(min_length=3, max_length=254, serialization_alias="userEmail")
