from __future__ import annotations

import json
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from realchat.models import ClientStateEntry

logger = logging.getLogger(__name__)

CONVERSATIONS_STATE_KEY = "realchat-conversations"
AUTH_STATE_KEY = "auth-storage"


def load_state(db: Session, key: str) -> dict[str, object] | None:
    entry = db.get(ClientStateEntry, key)
    if entry is None:
        logger.debug("No persisted state key=%s", key)
        return None
    try:
        decoded = json.loads(entry.value_json)
    except json.JSONDecodeError:
        logger.warning("Persisted state is not valid JSON key=%s", key)
        return None
    if not isinstance(decoded, dict):
        logger.warning("Persisted state is not an object key=%s", key)
        return None
    return decoded


def save_state(db: Session, key: str, payload: dict[str, object]) -> None:
    value_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    entry = db.get(ClientStateEntry, key)
    if entry is None:
        db.add(ClientStateEntry(key=key, value_json=value_json))
    else:
        entry.value_json = value_json
    db.commit()
    logger.debug("Persisted state key=%s bytes=%s", key, len(value_json))


def delete_state(db: Session, key: str) -> None:
    entry = db.get(ClientStateEntry, key)
    if entry is None:
        return
    db.delete(entry)
    db.commit()
    logger.debug("Deleted persisted state key=%s", key)


class StatePersister:
    def __init__(self, *, session_factory: Callable[[], Session], key: str) -> None:
        self._session_factory = session_factory
        self.key = key

    def load(self) -> dict[str, object] | None:
        with self._session_factory() as db:
            return load_state(db, self.key)

    def save(self, payload: dict[str, object]) -> None:
        with self._session_factory() as db:
            save_state(db, self.key, payload)

    def clear(self) -> None:
        with self._session_factory() as db:
            delete_state(db, self.key)
