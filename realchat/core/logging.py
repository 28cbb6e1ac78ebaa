from __future__ import annotations

import logging

_TRANSPORT_LOGGERS = ("aiohttp.client", "aiohttp.websocket", "aiohttp.internal")


def configure_logging(*, debug: bool, app_name: str = "realchat") -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )

    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured for %s", app_name)
    logger.info("Debug mode is %s", "enabled" if debug else "disabled")
