from __future__ import annotations

from enum import StrEnum


class ConversationType(StrEnum):
    DM = "dm"
    GROUP = "group"


class MessageType(StrEnum):
    TEXT = "text"
    FILE = "file"
    VOICE = "voice"


class MessageStatus(StrEnum):
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
