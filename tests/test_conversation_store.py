from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from realchat.schemas.conversations import Conversation
from realchat.schemas.enums import MessageStatus
from realchat.schemas.messages import Message
from realchat.store import ConversationStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class _RecordingPersister:
    def __init__(self) -> None:
        self.snapshots: list[dict[str, object]] = []

    def save(self, payload: dict[str, object]) -> None:
        self.snapshots.append(payload)


def _message(message_id: str, **fields) -> Message:
    values = {"id": message_id, "sender_id": "u2", "sender_name": "Bob", "content": message_id, "timestamp": NOW}
    values.update(fields)
    return Message(**values)


def test_dm_requires_two_distinct_participants():
    with pytest.raises(ValidationError):
        Conversation(id="c1", type="dm", participants=["u1"])
    with pytest.raises(ValidationError):
        Conversation(id="c1", type="dm", participants=["u1", "u1"])
    with pytest.raises(ValidationError):
        Conversation(id="g1", type="group", participants=[])


def test_conversation_accepts_camel_case_payload():
    conversation = Conversation.model_validate(
        {
            "id": "c1",
            "type": "dm",
            "participants": ["u1", "u2"],
            "lastMessage": {"content": "hey"},
            "unreadCount": 3,
            "isOnline": True,
        }
    )

    assert conversation.last_message == "hey"
    assert conversation.unread_count == 3
    assert conversation.is_online is True


def test_set_conversations_drops_duplicate_ids_and_dm_pairs(store):
    store.set_conversations(
        [
            Conversation(id="c1", type="dm", participants=["u1", "u2"]),
            Conversation(id="c1", type="group", participants=["u1"]),
            Conversation(id="c2", type="dm", participants=["u2", "u1"]),
            Conversation(id="g1", type="group", participants=["u1", "u3"]),
        ]
    )

    assert [conversation.id for conversation in store.conversations] == ["c1", "g1"]


def test_add_conversation_inserts_at_front_and_keeps_dm_pair_unique(dm_store):
    added = dm_store.add_conversation(Conversation(id="g2", type="group", participants=["u1"]))
    existing = dm_store.add_conversation(Conversation(id="c9", type="dm", participants=["u2", "u1"]))

    assert added.id == "g2"
    assert existing.id == "c1"
    assert [conversation.id for conversation in dm_store.conversations] == ["g2", "c1", "g1"]


def test_add_conversation_replaces_same_id_in_place(dm_store):
    dm_store.add_conversation(Conversation(id="g1", type="group", name="Renamed", participants=["u1"]))

    assert [conversation.id for conversation in dm_store.conversations] == ["c1", "g1"]
    assert dm_store.get_conversation("g1").name == "Renamed"


def test_remove_conversation_drops_messages_and_moves_active(dm_store):
    dm_store.add_message("c1", _message("m1"))
    dm_store.add_typing_user("c1", "u2")
    dm_store.set_active_conversation("c1")

    dm_store.remove_conversation("c1")

    assert dm_store.get_conversation("c1") is None
    assert dm_store.messages("c1") == []
    assert dm_store.typing_users("c1") == []
    assert dm_store.active_conversation_id == "g1"

    dm_store.remove_conversation("g1")
    assert dm_store.active_conversation_id is None


def test_messages_preserve_append_order(store):
    for message_id in ("m1", "m2", "m3"):
        store.add_message("c1", _message(message_id))

    assert [message.id for message in store.messages("c1")] == ["m1", "m2", "m3"]


def test_update_message_and_lookup_by_client_id(store):
    store.add_message("c1", _message("local-1", status=MessageStatus.SENDING, client_message_id="local-1"))

    located = store.find_message_by_client_id("c1", "local-1")
    updated = store.update_message("c1", "local-1", status=MessageStatus.FAILED)

    assert located is not None
    assert located.id == "local-1"
    assert updated.status == MessageStatus.FAILED
    assert store.update_message("c1", "missing", status=None) is None
    assert store.find_message_by_client_id("c1", "other") is None
    assert store.find_message_by_client_id("g1", "local-1") is None


def test_mark_as_read_adds_reader_once(store):
    store.add_message("c1", _message("m1"))

    store.mark_as_read("c1", "m1", "u1")
    store.mark_as_read("c1", "m1", "u1")

    assert store.messages("c1")[0].read_by == ["u1"]


def test_add_user_to_group_conversation(dm_store):
    dm_store.add_user_to_conversation("g1", "u7")
    dm_store.add_user_to_conversation("g1", "u7")

    assert dm_store.get_conversation("g1").participants == ["u1", "u2", "u3", "u7"]


def test_typing_users_behave_as_a_set_and_are_not_persisted():
    persister = _RecordingPersister()
    store = ConversationStore(persister=persister)

    store.add_typing_user("c1", "u2")
    store.add_typing_user("c1", "u2")
    assert store.typing_users("c1") == ["u2"]

    store.remove_typing_user("c1", "u2")
    store.remove_typing_user("c1", "u2")
    assert store.typing_users("c1") == []
    assert persister.snapshots == []


def test_listeners_are_notified_and_can_unsubscribe(store):
    calls: list[int] = []
    unsubscribe = store.subscribe(lambda changed: calls.append(len(changed.conversations)))

    store.add_conversation(Conversation(id="g1", type="group", participants=["u1"]))
    unsubscribe()
    store.add_conversation(Conversation(id="g2", type="group", participants=["u1"]))

    assert calls == [1]


def test_failing_listener_does_not_block_mutation(store):
    def broken(_store):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.add_message("c1", _message("m1"))

    assert len(store.messages("c1")) == 1


def test_snapshot_round_trip_uses_camel_case_keys(dm_store):
    persister = _RecordingPersister()
    dm_store.add_message("c1", _message("m1", reply_to="m0"))
    dm_store.set_active_conversation("c1")
    snapshot = dm_store.snapshot()

    restored = ConversationStore(persister=persister)
    restored.restore(snapshot)

    assert snapshot["activeConversationId"] == "c1"
    assert snapshot["messages"]["c1"][0]["senderId"] == "u2"
    assert snapshot["messages"]["c1"][0]["replyTo"] == "m0"
    assert [conversation.id for conversation in restored.conversations] == ["c1", "g1"]
    assert restored.messages("c1")[0].timestamp == NOW
    assert restored.active_conversation_id == "c1"
    assert persister.snapshots == []


def test_restore_skips_invalid_entries(store):
    store.restore(
        {
            "conversations": [{"id": "c1", "type": "dm", "participants": ["u1"]}, {"id": "g1", "type": "group", "participants": ["u1"]}],
            "messages": {"g1": [{"id": "m1"}]},
            "activeConversationId": 42,
        }
    )

    assert [conversation.id for conversation in store.conversations] == ["g1"]
    assert store.messages("g1") == []
    assert store.active_conversation_id is None


def test_clear_persists_empty_state():
    persister = _RecordingPersister()
    store = ConversationStore(persister=persister)
    store.add_conversation(Conversation(id="g1", type="group", participants=["u1"]))

    store.clear()

    assert store.conversations == []
    assert persister.snapshots[-1] == {"conversations": [], "messages": {}, "activeConversationId": None}
