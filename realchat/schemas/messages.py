from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from realchat.schemas.enums import MessageStatus, MessageType

AUDIO_FILE_PATTERN = re.compile(r"\.(mp3|wav|webm|ogg|m4a)$", re.IGNORECASE)


def classify_message_type(files: list[str]) -> MessageType:
    if any(AUDIO_FILE_PATTERN.search(url) for url in files):
        return MessageType.VOICE
    if files:
        return MessageType.FILE
    return MessageType.TEXT


class Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    sender_id: str
    sender_name: str
    content: str = ""
    timestamp: datetime
    type: MessageType = MessageType.TEXT
    files: list[str] = Field(default_factory=list)
    status: MessageStatus | None = None
    reply_to: str | None = None
    reply_text: str | None = None
    reply_sender: str | None = None
    client_message_id: str | None = None
    content_lang: str | None = None
    read_by: list[str] = Field(default_factory=list)

    @field_validator("files", "read_by", mode="before")
    @classmethod
    def none_as_empty(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def is_pending(self) -> bool:
        return self.status == MessageStatus.SENDING


class SendMessageRequest(BaseModel):
    text: str = Field(default="", max_length=4000)
    files: list[str] = Field(default_factory=list)
    reply_to: str | None = None
    reply_text: str | None = None
    reply_sender: str | None = None

    @model_validator(mode="after")
    def require_body(self) -> SendMessageRequest:
        if not self.text.strip() and not self.files:
            raise ValueError("message needs text or at least one file")
        return self


class UploadedFile(BaseModel):
    url: str
    filename: str = ""
    size: int = 0
    type: str = ""
