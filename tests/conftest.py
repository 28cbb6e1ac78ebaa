from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import make_settings
from realchat.core.settings import Settings
from realchat.db.session import create_session_factory, create_state_engine, init_db
from realchat.schemas.conversations import Conversation
from realchat.store import ConversationStore


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_state_engine(f"sqlite:///{tmp_path / 'state.db'}")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture()
def dm_store() -> ConversationStore:
    conversation_store = ConversationStore()
    conversation_store.set_conversations(
        [
            Conversation(id="c1", type="dm", name="Bob", participants=["u1", "u2"]),
            Conversation(id="g1", type="group", name="Team", participants=["u1", "u2", "u3"]),
        ]
    )
    return conversation_store
