from __future__ import annotations

import json
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from realchat.core.errors import ProtocolError

MAX_FRAME_BYTES = 1_048_576


class _InboundFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MessageFrame(_InboundFrame):
    type: Literal["message"]
    from_user: str = Field(min_length=1)
    chat_type: Literal["dm", "group"]
    text: str = ""
    files: list[str] = Field(default_factory=list)
    group_id: str | None = None
    conversation_id: str | None = None
    lang: str | None = None
    client_message_id: str | None = None
    sender_name: str | None = None

    @field_validator("files", mode="before")
    @classmethod
    def none_as_empty(cls, value: object) -> object:
        return [] if value is None else value


class GroupCreatedFrame(_InboundFrame):
    type: Literal["group_created"]
    group_id: str | None = None
    text: str | None = None
    lang: str | None = None


class JoinedGroupFrame(_InboundFrame):
    type: Literal["joined_group"]
    group_id: str | None = None
    text: str | None = None
    lang: str | None = None


class ErrorFrame(_InboundFrame):
    type: Literal["error"]
    error: str = ""
    lang: str | None = None


class UnknownFrame(_InboundFrame):
    type: str
    payload: dict[str, object] = Field(default_factory=dict)


InboundFrame = MessageFrame | GroupCreatedFrame | JoinedGroupFrame | ErrorFrame | UnknownFrame

_FRAME_MODELS: dict[str, type[_InboundFrame]] = {
    "message": MessageFrame,
    "group_created": GroupCreatedFrame,
    "joined_group": JoinedGroupFrame,
    "error": ErrorFrame,
}


def parse_frame(raw_text: str | bytes, *, max_bytes: int = MAX_FRAME_BYTES) -> InboundFrame:
    if isinstance(raw_text, bytes):
        try:
            raw_text = raw_text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(code="INVALID_FRAME", message="Frame is not valid UTF-8") from exc

    payload_size = len(raw_text.encode("utf-8"))
    if payload_size > max_bytes:
        raise ProtocolError(code="INVALID_FRAME", message="Frame is too large")

    try:
        decoded = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(code="INVALID_FRAME", message="Invalid JSON payload") from exc

    if not isinstance(decoded, dict):
        raise ProtocolError(code="INVALID_FRAME", message="Frame payload must be an object")

    frame_type = decoded.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ProtocolError(code="INVALID_FRAME", message="Frame type is missing")

    model = _FRAME_MODELS.get(frame_type)
    if model is None:
        return UnknownFrame(type=frame_type, payload=decoded)

    try:
        return model.model_validate(decoded)
    except ValidationError as exc:
        raise ProtocolError(code="INVALID_FRAME", message=str(exc.errors()[0]["msg"])) from exc


class SendMessageFrame(BaseModel):
    type: Literal["send_message"] = "send_message"
    chat_type: Literal["dm", "group"]
    to_user: str | None = None
    group_id: str | None = None
    conversation_id: str
    text: str
    source_lang: str
    files: list[str] | None = None
    client_message_id: str | None = None


class CreateGroupFrame(BaseModel):
    type: Literal["create_group"] = "create_group"
    name: str = Field(min_length=1)
    members: list[str]


OutboundFrame = SendMessageFrame | CreateGroupFrame


def dm_message_frame(
    *,
    to_user: str,
    conversation_id: str,
    text: str,
    source_lang: str,
    files: list[str] | None = None,
    client_message_id: str | None = None,
) -> SendMessageFrame:
    return SendMessageFrame(
        chat_type="dm",
        to_user=to_user,
        conversation_id=conversation_id,
        text=text,
        source_lang=source_lang,
        files=list(files) if files else None,
        client_message_id=client_message_id,
    )


def group_message_frame(
    *,
    group_id: str,
    text: str,
    source_lang: str,
    files: list[str] | None = None,
    client_message_id: str | None = None,
) -> SendMessageFrame:
    return SendMessageFrame(
        chat_type="group",
        group_id=group_id,
        conversation_id=group_id,
        text=text,
        source_lang=source_lang,
        files=list(files) if files else None,
        client_message_id=client_message_id,
    )


def create_group_frame(*, name: str, members: list[str]) -> CreateGroupFrame:
    return CreateGroupFrame(name=name.strip(), members=list(dict.fromkeys(members)))


def encode_frame(frame: OutboundFrame) -> str:
    return frame.model_dump_json(exclude_none=True)
