from __future__ import annotations

import json

import pytest

from realchat.core.errors import ProtocolError
from realchat.realtime.protocol import (
    ErrorFrame,
    GroupCreatedFrame,
    JoinedGroupFrame,
    MessageFrame,
    UnknownFrame,
    create_group_frame,
    dm_message_frame,
    encode_frame,
    parse_frame,
)


def test_parse_message_frame_from_server():
    frame = parse_frame(
        json.dumps(
            {
                "type": "message",
                "chat_type": "group",
                "from_user": "u2",
                "group_id": "g1",
                "text": "hola",
                "files": None,
                "lang": "es",
                "unexpected": True,
            }
        )
    )

    assert isinstance(frame, MessageFrame)
    assert frame.group_id == "g1"
    assert frame.files == []
    assert frame.lang == "es"


def test_parse_group_and_error_frames():
    assert isinstance(parse_frame('{"type": "group_created", "group_id": "g1"}'), GroupCreatedFrame)
    assert isinstance(parse_frame(b'{"type": "joined_group", "group_id": "g1", "text": "welcome"}'), JoinedGroupFrame)

    error = parse_frame('{"type": "error", "error": "invalid_json"}')
    assert isinstance(error, ErrorFrame)
    assert error.error == "invalid_json"


def test_unknown_type_is_preserved_not_rejected():
    frame = parse_frame('{"type": "presence", "user": "u2"}')

    assert isinstance(frame, UnknownFrame)
    assert frame.payload["user"] == "u2"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"text": "no type"}',
        '{"type": ""}',
        '{"type": "message", "chat_type": "dm"}',
        '{"type": "message", "chat_type": "channel", "from_user": "u2"}',
        b"\xff\xfe",
    ],
)
def test_malformed_frames_raise_protocol_error(raw):
    with pytest.raises(ProtocolError) as exc_info:
        parse_frame(raw)

    assert exc_info.value.code == "INVALID_FRAME"


def test_oversized_frame_is_rejected():
    with pytest.raises(ProtocolError):
        parse_frame(json.dumps({"type": "message", "text": "x" * 64}), max_bytes=32)


def test_encode_omits_empty_optional_fields():
    frame = dm_message_frame(to_user="u2", conversation_id="c1", text="hi", source_lang="en")

    assert json.loads(encode_frame(frame)) == {
        "type": "send_message",
        "chat_type": "dm",
        "to_user": "u2",
        "conversation_id": "c1",
        "text": "hi",
        "source_lang": "en",
    }


def test_create_group_frame_rejects_blank_name():
    with pytest.raises(ValueError):
        create_group_frame(name="   ", members=["u2"])
