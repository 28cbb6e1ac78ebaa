from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def _connect_args(database_url: str) -> dict[str, object]:
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def create_state_engine(database_url: str) -> Engine:
    logger.info("Configuring client state engine")
    logger.debug("State database URL: %s", database_url)
    return create_engine(database_url, connect_args=_connect_args(database_url), future=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(engine: Engine) -> None:
    from realchat.models import client_state  # noqa: F401

    logger.info("Creating client state tables if they do not exist")
    Base.metadata.create_all(bind=engine)
    logger.info("Client state schema initialization complete")
