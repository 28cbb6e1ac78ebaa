from __future__ import annotations

import asyncio
import itertools
from datetime import UTC, datetime

from fakes import FakeConversationApi, FakeCredentials, FakeScheduler, FakeTransportFactory, make_settings, settle
from realchat.realtime.group_lifecycle import GroupLifecycleHandler
from realchat.realtime.protocol import ErrorFrame, MessageFrame, UnknownFrame, parse_frame
from realchat.realtime.router import MessageRouter
from realchat.realtime.session_manager import SessionManager
from realchat.schemas.conversations import Conversation
from realchat.schemas.enums import MessageStatus, MessageType
from realchat.schemas.messages import SendMessageRequest
from realchat.store import ConversationStore

FIXED_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _build(store: ConversationStore, *, group_handler=None, settings=None):
    factory = FakeTransportFactory()
    credentials = FakeCredentials()
    session = SessionManager(
        credentials=credentials,
        transport_factory=factory,
        settings=settings or make_settings(),
        scheduler=FakeScheduler(),
    )
    counter = itertools.count(1)
    router = MessageRouter(
        session=session,
        store=store,
        credentials=credentials,
        group_handler=group_handler,
        id_factory=lambda: f"local-{next(counter)}",
        clock=lambda: FIXED_TIME,
    )
    session.set_frame_handler(router.handle_frame)
    return session, router, factory


def _inbound(**fields) -> MessageFrame:
    payload = {"type": "message", "chat_type": "dm", "from_user": "u2", "text": "hello"}
    payload.update(fields)
    return MessageFrame.model_validate(payload)


def test_send_then_receive_scenario(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        assert router.send_message("c1", SendMessageRequest(text="hi")) is False
        assert dm_store.messages("c1") == []

        session.connect()
        await settle()
        assert router.send_message("c1", SendMessageRequest(text="hi")) is True
        pending = dm_store.messages("c1")
        assert len(pending) == 1
        assert pending[0].status == MessageStatus.SENDING

        factory.last.feed({"type": "message", "chat_type": "dm", "from_user": "u2", "text": "hello"})
        await settle()
        sent = factory.last.sent_frames
        await session.disconnect()
        return sent

    sent = asyncio.run(scenario())
    messages = dm_store.messages("c1")
    assert len(messages) == 2
    assert messages[1].sender_id == "u2"
    assert messages[1].content == "hello"
    assert messages[1].status is None
    assert sent == [
        {
            "type": "send_message",
            "chat_type": "dm",
            "to_user": "u2",
            "conversation_id": "c1",
            "text": "hi",
            "source_lang": "en",
            "client_message_id": "local-1",
        }
    ]


def test_dm_without_other_participant_fails_without_optimistic_message(store):
    lonely = Conversation.model_construct(id="c-lonely", type="dm", name="Me", participants=["u1"])
    store.add_conversation(lonely)

    async def scenario():
        session, router, factory = _build(store)
        session.connect()
        await settle()
        result = router.send_message("c-lonely", SendMessageRequest(text="hi"))
        await settle()
        sent = factory.last.sent
        await session.disconnect()
        return result, sent

    result, sent = asyncio.run(scenario())
    assert result is False
    assert store.messages("c-lonely") == []
    assert sent == []


def test_send_to_unknown_conversation_fails(dm_store):
    async def scenario():
        session, router, _ = _build(dm_store)
        session.connect()
        await settle()
        result = router.send_message("missing", SendMessageRequest(text="hi"))
        await session.disconnect()
        return result

    assert asyncio.run(scenario()) is False
    assert dm_store.all_messages() == {}


def test_group_send_uses_group_id_and_classifies_files(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        session.connect()
        await settle()
        router.send_message("g1", SendMessageRequest(text="", files=["https://cdn.test/note.webm"]))
        await settle()
        sent = factory.last.sent_frames
        await session.disconnect()
        return sent

    sent = asyncio.run(scenario())
    assert sent[0]["chat_type"] == "group"
    assert sent[0]["group_id"] == "g1"
    assert sent[0]["files"] == ["https://cdn.test/note.webm"]
    assert "to_user" not in sent[0]
    assert dm_store.messages("g1")[0].type == MessageType.VOICE


def test_inbound_dm_with_unknown_sender_leaves_store_unchanged(dm_store):
    session, router, _ = _build(dm_store)
    before = dm_store.snapshot()

    router.handle_frame(_inbound(from_user="stranger"))

    assert dm_store.snapshot() == before


def test_inbound_group_message_routes_by_group_id(dm_store):
    _, router, _ = _build(dm_store)

    router.handle_frame(_inbound(chat_type="group", group_id="g1", from_user="u3", text="team", lang="de"))
    router.handle_frame(_inbound(chat_type="group", group_id="unknown-group", from_user="u3"))

    assert [message.content for message in dm_store.messages("g1")] == ["team"]
    assert dm_store.messages("g1")[0].content_lang == "de"
    assert [message.sender_id for message in dm_store.messages("unknown-group")] == ["u3"]


def test_inbound_messages_keep_arrival_order(dm_store):
    _, router, _ = _build(dm_store)

    for text in ("m1", "m2", "m3"):
        router.handle_frame(_inbound(text=text))

    assert [message.content for message in dm_store.messages("c1")] == ["m1", "m2", "m3"]


def test_echo_with_known_client_id_confirms_pending_message(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        session.connect()
        await settle()
        router.send_message("c1", SendMessageRequest(text="hi"))
        factory.last.feed(
            {
                "type": "message",
                "chat_type": "dm",
                "from_user": "u1",
                "conversation_id": "c1",
                "text": "hi",
                "lang": "en",
                "client_message_id": "local-1",
            }
        )
        await settle()
        await session.disconnect()

    asyncio.run(scenario())
    messages = dm_store.messages("c1")
    assert len(messages) == 1
    assert messages[0].id == "local-1"
    assert messages[0].status is None
    assert messages[0].content_lang == "en"


def test_own_echo_resolves_by_conversation_id(store):
    store.set_conversations(
        [
            Conversation(id="c1", type="dm", name="Bob", participants=["u1", "u2"]),
            Conversation(id="c2", type="dm", name="Carol", participants=["u1", "u3"]),
        ]
    )

    async def scenario():
        session, router, factory = _build(store)
        session.connect()
        await settle()
        router.send_message("c2", SendMessageRequest(text="hi carol"))
        factory.last.feed(
            {
                "type": "message",
                "chat_type": "dm",
                "from_user": "u1",
                "conversation_id": "c2",
                "text": "hi carol",
                "client_message_id": "local-1",
            }
        )
        await settle()
        await session.disconnect()

    asyncio.run(scenario())
    assert store.messages("c1") == []
    assert [(message.content, message.status) for message in store.messages("c2")] == [("hi carol", None)]


def test_matching_client_id_in_other_conversation_is_stored_as_new_message(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        session.connect()
        await settle()
        router.send_message("c1", SendMessageRequest(text="hi"))
        factory.last.feed(
            {
                "type": "message",
                "chat_type": "group",
                "group_id": "g1",
                "from_user": "u3",
                "text": "team",
                "client_message_id": "local-1",
            }
        )
        await settle()
        await session.disconnect()

    asyncio.run(scenario())
    assert [(message.content, message.status) for message in dm_store.messages("c1")] == [
        ("hi", MessageStatus.SENDING)
    ]
    assert [(message.sender_id, message.content) for message in dm_store.messages("g1")] == [("u3", "team")]


def test_matching_client_id_from_other_sender_is_appended(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        session.connect()
        await settle()
        router.send_message("c1", SendMessageRequest(text="hi"))
        factory.last.feed(
            {"type": "message", "chat_type": "dm", "from_user": "u2", "text": "hi", "client_message_id": "local-1"}
        )
        await settle()
        await session.disconnect()

    asyncio.run(scenario())
    messages = dm_store.messages("c1")
    assert [(message.sender_id, message.status) for message in messages] == [
        ("u1", MessageStatus.SENDING),
        ("u2", None),
    ]


def test_identical_text_without_client_id_is_appended(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        session.connect()
        await settle()
        router.send_message("c1", SendMessageRequest(text="hi"))
        factory.last.feed({"type": "message", "chat_type": "dm", "from_user": "u2", "text": "hi"})
        await settle()
        await session.disconnect()

    asyncio.run(scenario())
    messages = dm_store.messages("c1")
    assert len(messages) == 2
    assert messages[0].status == MessageStatus.SENDING


def test_queue_rejection_marks_message_failed(dm_store):
    async def scenario():
        session, router, _ = _build(dm_store, settings=make_settings(outgoing_queue_size=1))
        session.connect()
        await settle()
        assert router.send_message("c1", SendMessageRequest(text="first")) is True
        result = router.send_message("c1", SendMessageRequest(text="second"))
        await session.disconnect()
        return result

    assert asyncio.run(scenario()) is False
    statuses = [message.status for message in dm_store.messages("c1")]
    assert statuses == [MessageStatus.SENDING, MessageStatus.FAILED]


def test_create_group_sends_trimmed_frame(dm_store):
    async def scenario():
        session, router, factory = _build(dm_store)
        assert router.create_group("Team", ["u2"]) is False
        session.connect()
        await settle()
        assert router.create_group("   ", ["u2"]) is False
        assert router.create_group("  Weekend  ", ["u2", "u3", "u2"]) is True
        await settle()
        sent = factory.last.sent_frames
        await session.disconnect()
        return sent

    assert asyncio.run(scenario()) == [{"type": "create_group", "name": "Weekend", "members": ["u2", "u3"]}]


def test_group_frames_trigger_conversation_refresh(dm_store):
    api = FakeConversationApi()
    api.conversations = [
        Conversation(id="c1", type="dm", participants=["u1", "u2"]),
        Conversation(id="g2", type="group", name="New", participants=["u1", "u4"]),
    ]
    handler = GroupLifecycleHandler(api=api, store=dm_store)

    async def scenario():
        _, router, _ = _build(dm_store, group_handler=handler)
        router.handle_frame(_inbound(text="before"))
        router.handle_frame(parse_frame('{"type": "group_created", "group_id": "g2"}'))
        router.handle_frame(parse_frame('{"type": "joined_group", "group_id": "g2"}'))
        await handler.join()

    asyncio.run(scenario())
    assert api.list_calls == 2
    assert [conversation.id for conversation in dm_store.conversations] == ["c1", "g2"]
    assert handler.pending == 0


def test_error_and_unknown_frames_do_not_touch_store(dm_store, caplog):
    _, router, _ = _build(dm_store)
    before = dm_store.snapshot()

    with caplog.at_level("INFO"):
        router.handle_frame(ErrorFrame(type="error", error="unknown_type"))
        router.handle_frame(UnknownFrame(type="presence", payload={"type": "presence"}))

    assert dm_store.snapshot() == before
    assert "unknown_type" in caplog.text
    assert "presence" in caplog.text
